import tempfile
import unittest
from pathlib import Path
from typing import Dict, Optional
from unittest import mock

from fablebot.errors import NoGuaranteesError, NoPullsError, PoolError
from fablebot.gacha import MAX_SAMPLE_ATTEMPTS, MAX_VALIDATION_ATTEMPTS, VARIABLES, Gacha
from fablebot.models import Alias, Character, CharacterRole, Manifest, Media, MediaEdge, PoolEntry
from fablebot.packs import ANILIST_MANIFEST, PackRegistry, range_key
from fablebot.store import MAX_NEW_PULLS, InventoryStore
from fablebot.utils import RngResult

RANGE = (2000, 3000)


def _fixed_rng(role: Optional[CharacterRole] = CharacterRole.MAIN):
    def pick(table):
        if table is VARIABLES.ranges:
            return RngResult(value=RANGE, chance=65)
        return RngResult(value=role, chance=10)

    return pick


def _character(
    index: int,
    *,
    role: CharacterRole = CharacterRole.MAIN,
    popularity: Optional[int] = 2500,
    media: bool = True,
    is_adult: bool = False,
) -> Character:
    edges = ()
    if media:
        node = Media(
            id=f"{index + 100}",
            pack_id="anilist",
            title=Alias(english=f"media {index}"),
            popularity=popularity,
            is_adult=is_adult,
        )
        edges = (MediaEdge(role=role, node=node),)
    return Character(id=str(index), pack_id="anilist", name=Alias(english=f"name {index}"), media=edges)


class GachaTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = InventoryStore(Path(self._tmp.name) / "fable.sqlite3")
        self.catalog: Dict[str, Character] = {}
        self.anilist = mock.AsyncMock()
        self.anilist.characters.side_effect = lambda ids: [
            self.catalog[str(number)] for number in ids if str(number) in self.catalog
        ]
        rng_patch = mock.patch("fablebot.gacha.rng", side_effect=_fixed_rng())
        self.rng = rng_patch.start()
        self.addCleanup(rng_patch.stop)

    async def asyncTearDown(self) -> None:
        self.store.close()
        self._tmp.cleanup()

    def _gacha(self, characters, *, conflicts=(), bucket="MAIN", rating=None) -> Gacha:
        for character in characters:
            self.catalog[character.id] = character
        entries = [
            PoolEntry(
                id=character.key,
                media_id=character.first_edge.node.key if character.first_edge else f"anilist:{character.id}00",
                rating=rating or 1,
            )
            for character in characters
        ]
        builtins = [ANILIST_MANIFEST]
        if conflicts:
            builtins.append(Manifest(id="vtubers", conflicts=tuple(conflicts)))
        registry = PackRegistry(
            self.store,
            self.anilist,
            builtins=builtins,
            pool={range_key(RANGE): {"ALL": entries, bucket: entries}},
        )
        return Gacha(registry, self.store)

    async def test_candidates_without_media_exhaust_the_pool(self) -> None:
        gacha = self._gacha([_character(index, media=False) for index in range(1, 26)])

        with self.assertRaises(PoolError) as ctx:
            await gacha.rng_pull("guild_id", "user_id")

        self.assertIn("failed to pull a character", str(ctx.exception))
        self.assertEqual(self.anilist.characters.await_count, 25)
        self.assertEqual(self.rng.call_count, 2)

    async def test_lookups_are_capped(self) -> None:
        gacha = self._gacha([_character(index, role=CharacterRole.SUPPORTING) for index in range(1, 41)])

        with self.assertRaises(PoolError):
            await gacha.rng_pull("guild_id")

        self.assertEqual(self.anilist.characters.await_count, MAX_VALIDATION_ATTEMPTS)

    async def test_out_of_range_popularity_is_rejected(self) -> None:
        gacha = self._gacha([_character(1, popularity=3001)])
        with self.assertRaises(PoolError):
            await gacha.rng_pull("guild_id")

    async def test_adult_media_is_rejected(self) -> None:
        gacha = self._gacha([_character(1, is_adult=True)])
        with self.assertRaises(PoolError):
            await gacha.rng_pull("guild_id")

    async def test_media_without_popularity_is_rejected(self) -> None:
        gacha = self._gacha([_character(1, popularity=None)])
        with self.assertRaises(PoolError):
            await gacha.rng_pull("guild_id")

    async def test_guaranteed_pull_rejects_media_without_popularity(self) -> None:
        gacha = self._gacha([_character(1, popularity=None)], rating=1)
        await self.store.add_guarantee("user_id", 1)

        with self.assertRaises(PoolError):
            await gacha.rng_pull("guild_id", "user_id", guarantee=1)

        self.assertIsNone(await self.store.get_character("guild_id", "anilist:1"))
        self.assertEqual((await self.store.get_user("user_id")).guarantees, [1])

    async def test_disabled_characters_are_rejected(self) -> None:
        gacha = self._gacha([_character(1)], conflicts=["anilist:1"])
        with self.assertRaises(PoolError):
            await gacha.rng_pull("guild_id")

    async def test_disabled_media_is_rejected(self) -> None:
        gacha = self._gacha([_character(1)], conflicts=["anilist:101"])
        with self.assertRaises(PoolError):
            await gacha.rng_pull("guild_id")

    async def test_empty_pool_resamples_then_fails(self) -> None:
        gacha = self._gacha([])

        with self.assertRaises(PoolError):
            await gacha.rng_pull("guild_id")

        self.assertEqual(self.rng.call_count, 2 * MAX_SAMPLE_ATTEMPTS)
        self.anilist.characters.assert_not_awaited()

    async def test_valid_pull_without_user(self) -> None:
        gacha = self._gacha([_character(1)])

        pull = await gacha.rng_pull("guild_id")

        self.assertEqual(pull.character.key, "anilist:1")
        self.assertEqual(pull.media.key, "anilist:101")
        self.assertEqual(pull.rating, 1)
        self.assertEqual(pull.pool, 1)
        self.assertIs(pull.role, CharacterRole.MAIN)
        self.assertEqual(pull.role_chance, 10)
        self.assertEqual(pull.popularity_chance, 65)
        self.assertEqual((pull.popularity_greater, pull.popularity_lesser), RANGE)
        self.assertIsNone(pull.remaining)
        self.assertIsNone(await self.store.get_character("guild_id", "anilist:1"))

    async def test_pull_is_committed_to_the_inventory(self) -> None:
        gacha = self._gacha([_character(1)])

        pull = await gacha.rng_pull("guild_id", "user_id")

        self.assertEqual(pull.remaining, MAX_NEW_PULLS - 1)
        self.assertEqual(pull.guarantees, [])
        stored = await self.store.get_character("guild_id", "anilist:1")
        self.assertIsNotNone(stored)
        self.assertEqual(stored.rating, pull.rating)
        self.assertEqual(stored.media_id, "anilist:101")
        self.assertEqual(stored.user_id, "user_id")
        inventory = await self.store.get_inventory("guild_id", "user_id")
        self.assertIsNotNone(inventory.last_pull)

    async def test_no_pulls_left(self) -> None:
        gacha = self._gacha([_character(1)])
        await self.store.add_pulls("guild_id", "user_id", -MAX_NEW_PULLS)

        with self.assertRaises(NoPullsError) as ctx:
            await gacha.rng_pull("guild_id", "user_id")

        self.assertTrue(ctx.exception.recharge_timestamp.isdigit())
        self.assertIsNone(await self.store.get_character("guild_id", "anilist:1"))

    async def test_likes_exclude_the_puller(self) -> None:
        gacha = self._gacha([_character(1)])
        await self.store.get_inventory("guild_id", "fan_id")
        await self.store.like("fan_id", media_id="anilist:101")
        await self.store.like("user_id", character_id="anilist:1")

        pull = await gacha.rng_pull("guild_id", "user_id")

        self.assertEqual(pull.likes, ["fan_id"])

    async def test_guaranteed_pull_skips_sampling(self) -> None:
        character = _character(1, popularity=250_000)
        gacha = self._gacha([character], rating=4)
        await self.store.add_guarantee("user_id", 4)

        pull = await gacha.rng_pull("guild_id", "user_id", guarantee=4)

        self.rng.assert_not_called()
        self.assertEqual(pull.rating, 4)
        self.assertIsNone(pull.role)
        self.assertEqual((pull.popularity_greater, pull.popularity_lesser), (400_000, 1_000_000))
        self.assertEqual(pull.guarantees, [])
        self.assertEqual(pull.remaining, MAX_NEW_PULLS)

    async def test_guaranteed_pull_needs_a_guarantee(self) -> None:
        gacha = self._gacha([_character(1, popularity=250_000)], rating=4)

        with self.assertRaises(NoGuaranteesError):
            await gacha.rng_pull("guild_id", "user_id", guarantee=4)


if __name__ == "__main__":
    unittest.main()
