import unittest

from fablebot.models import Alias, Character, CharacterRef, CharacterRole, Media, MediaEdge
from fablebot.rating import NO_STAR_EMOTE, STAR_EMOTE, Rating


def _character(role: CharacterRole, media_popularity: int, popularity=None) -> Character:
    media = Media(id="2", pack_id="anilist", title=Alias(english="title"), popularity=media_popularity)
    return Character(
        id="1",
        pack_id="anilist",
        name=Alias(english="name"),
        popularity=popularity,
        media=(MediaEdge(role=role, node=media),),
    )


class RatingTests(unittest.TestCase):
    def test_known_ratings(self) -> None:
        cases = [
            (CharacterRole.BACKGROUND, 1_000_000, 1),
            (CharacterRole.MAIN, 0, 1),
            (None, 0, 1),
            (CharacterRole.SUPPORTING, 199_999, 2),
            (None, 199_999, 2),
            (CharacterRole.MAIN, 199_999, 3),
            (CharacterRole.SUPPORTING, 250_000, 3),
            (None, 250_000, 3),
            (CharacterRole.MAIN, 250_000, 4),
            (CharacterRole.SUPPORTING, 500_000, 4),
            (None, 500_000, 4),
            (CharacterRole.MAIN, 400_000, 5),
            (None, 1_000_000, 5),
        ]
        for role, popularity, expected in cases:
            with self.subTest(role=role, popularity=popularity):
                self.assertEqual(Rating(role=role, popularity=popularity).stars, expected)

    def test_missing_popularity_is_one_star(self) -> None:
        self.assertEqual(Rating(role=CharacterRole.MAIN).stars, 1)
        self.assertEqual(Rating().stars, 1)

    def test_fixed_stars_are_clamped(self) -> None:
        self.assertEqual(Rating(stars=1).stars, 1)
        self.assertEqual(Rating(stars=3).stars, 3)
        self.assertEqual(Rating(stars=0).stars, 1)
        self.assertEqual(Rating(stars=9).stars, 5)

    def test_role_accepts_plain_strings(self) -> None:
        self.assertEqual(Rating(role="MAIN", popularity=250_000).stars, 4)

    def test_emotes(self) -> None:
        self.assertEqual(Rating(stars=2).emotes, STAR_EMOTE * 2 + NO_STAR_EMOTE * 3)
        self.assertEqual(Rating(stars=5).emotes, STAR_EMOTE * 5)

    def test_never_decreases_with_popularity(self) -> None:
        popularities = [0, 999, 1_000, 49_999, 50_000, 199_999, 200_000, 399_999, 400_000, 999_999, 1_000_000, 5_000_000]
        for role in (None, *CharacterRole):
            stars = [Rating(role=role, popularity=popularity).stars for popularity in popularities]
            with self.subTest(role=role):
                self.assertEqual(stars, sorted(stars))
                self.assertTrue(all(1 <= value <= 5 for value in stars))

    def test_background_never_exceeds_two_stars(self) -> None:
        for popularity in (0, 60_000, 250_000, 2_000_000):
            self.assertLessEqual(Rating(role=CharacterRole.BACKGROUND, popularity=popularity).stars, 2)

    def test_from_character_uses_first_media_edge(self) -> None:
        self.assertEqual(Rating.from_character(_character(CharacterRole.MAIN, 250_000)).stars, 4)

    def test_from_character_prefers_character_popularity(self) -> None:
        character = _character(CharacterRole.SUPPORTING, 10_000, popularity=500_000)
        self.assertEqual(Rating.from_character(character).stars, 4)

    def test_from_character_rejects_unresolved_characters(self) -> None:
        ref = CharacterRef(id="1", pack_id="pack", name=Alias(english="name"))
        with self.assertRaises(TypeError):
            Rating.from_character(ref)


if __name__ == "__main__":
    unittest.main()
