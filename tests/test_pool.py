import unittest
from unittest import mock

from fablebot.models import CharacterRole, Manifest, PoolEntry
from fablebot.packs import ANILIST_MANIFEST, PackRegistry, range_key

RANGE = (2000, 3000)


def _registry(pool, builtins=(ANILIST_MANIFEST,)) -> PackRegistry:
    store = mock.AsyncMock()
    store.get_guild_packs.return_value = []
    return PackRegistry(store, mock.AsyncMock(), builtins=list(builtins), pool=pool)


def _pack_manifest() -> Manifest:
    return Manifest.from_dict(
        {
            "id": "pack-id",
            "media": {
                "new": [
                    {"id": "2", "type": "ANIME", "format": "TV", "popularity": 250_000, "title": {"english": "title"}},
                ]
            },
            "characters": {
                "new": [
                    {"id": "1", "name": {"english": "name"}, "media": [{"role": "MAIN", "mediaId": "2"}]},
                    {"id": "3", "name": {"english": "no media"}},
                ]
            },
        }
    )


class PoolTests(unittest.IsolatedAsyncioTestCase):
    async def test_one_entry_per_media(self) -> None:
        entries = [PoolEntry(id=f"anilist:{index}", media_id=f"anilist:{index % 3}", rating=1) for index in range(30)]
        registry = _registry({range_key(RANGE): {"ALL": entries}})

        pool = await registry.pool("guild_id", range_=RANGE)

        self.assertEqual(len(pool), 3)
        self.assertEqual(sorted(entry.media_id for entry in pool), ["anilist:0", "anilist:1", "anilist:2"])

    async def test_role_bucket_is_used(self) -> None:
        registry = _registry(
            {
                range_key(RANGE): {
                    "ALL": [PoolEntry("anilist:1", "anilist:10", 1), PoolEntry("anilist:2", "anilist:20", 1)],
                    "MAIN": [PoolEntry("anilist:2", "anilist:20", 1)],
                }
            }
        )

        pool = await registry.pool("guild_id", range_=RANGE, role=CharacterRole.MAIN)

        self.assertEqual([entry.id for entry in pool], ["anilist:2"])

    async def test_missing_bracket_gives_empty_pool(self) -> None:
        registry = _registry({})
        self.assertEqual(await registry.pool("guild_id", range_=RANGE), [])

    async def test_stars_concatenate_every_bracket(self) -> None:
        registry = _registry(
            {
                range_key((1000, 50_000)): {"ALL": [PoolEntry("anilist:1", "anilist:10", 1)]},
                range_key((200_000, 400_000)): {
                    "ALL": [PoolEntry("anilist:2", "anilist:20", 3), PoolEntry("anilist:3", "anilist:30", 3)]
                },
                range_key((400_000, float("nan"))): {"ALL": [PoolEntry("anilist:4", "anilist:40", 5)]},
            }
        )

        pool = await registry.pool("guild_id", stars=3)

        self.assertEqual(sorted(entry.id for entry in pool), ["anilist:2", "anilist:3"])
        self.assertTrue(all(entry.rating == 3 for entry in pool))

    async def test_pack_characters_join_the_pool(self) -> None:
        registry = _registry({}, builtins=(ANILIST_MANIFEST, _pack_manifest()))

        pool = await registry.pool("guild_id", range_=RANGE)

        self.assertEqual(pool, [PoolEntry(id="pack-id:1", media_id="pack-id:2", rating=4)])

    async def test_pack_media_without_popularity_or_adult_is_left_out(self) -> None:
        manifest = Manifest.from_dict(
            {
                "id": "pack-id",
                "media": {
                    "new": [
                        {"id": "m", "title": {"english": "no popularity"}},
                        {"id": "a", "popularity": 30_000, "isAdult": True, "title": {"english": "adult"}},
                    ]
                },
                "characters": {
                    "new": [
                        {"id": "c", "name": {"english": "c"}, "media": [{"role": "MAIN", "mediaId": "m"}]},
                        {"id": "d", "name": {"english": "d"}, "media": [{"role": "MAIN", "mediaId": "a"}]},
                    ]
                },
            }
        )
        registry = _registry({}, builtins=(ANILIST_MANIFEST, manifest))

        self.assertEqual(await registry.pool("guild_id", stars=1), [])
        self.assertEqual(await registry.pool("guild_id", range_=RANGE), [])

    def test_unbounded_range_key(self) -> None:
        self.assertEqual(range_key((400_000, float("nan"))), "[400000,null]")
        self.assertEqual(range_key((1000, 50_000)), "[1000,50000]")


if __name__ == "__main__":
    unittest.main()
