import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fablebot.errors import NonFatalError
from fablebot.models import Alias, Media
from fablebot.packs import PackRegistry, alias_to_array, load_manifest, parse_id
from fablebot.store import InventoryStore

PACKS_DIR = Path(__file__).resolve().parents[1] / "packs"

COMMUNITY_MANIFEST = """
id: community
title: Community
conflicts:
  - anilist:5
media:
  new:
    - id: show
      popularity: 30000
      title:
        english: Show
characters:
  new:
    - id: hero
      name:
        english: Hero
      media:
        - role: MAIN
          mediaId: show
"""


class HelperTests(unittest.TestCase):
    def test_parse_id(self) -> None:
        self.assertEqual(parse_id("anilist:1"), ("anilist", "1"))
        self.assertEqual(parse_id("gawr-gura", "vtubers"), ("vtubers", "gawr-gura"))
        self.assertEqual(parse_id("gawr-gura"), (None, None))
        self.assertEqual(parse_id("not an id", "vtubers"), (None, None))

    def test_alias_to_array(self) -> None:
        alias = Alias(english="A very long name indeed", romaji="Short", native="Short")
        self.assertEqual(alias_to_array(alias), ["A very long name indeed", "Short"])
        self.assertEqual(alias_to_array(alias, 10), ["A very...", "Short"])

    def test_builtin_manifest(self) -> None:
        manifest, payload = load_manifest(PACKS_DIR / "vtubers" / "manifest.yaml")

        self.assertEqual(manifest.id, "vtubers")
        self.assertEqual(payload["id"], "vtubers")
        self.assertEqual(len(manifest.media), 2)
        self.assertEqual(len(manifest.characters), 4)
        self.assertEqual(manifest.characters[0].media[0].media_id, "hololive-en")

    def test_manifest_needs_an_id(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "manifest.yaml"
            path.write_text("title: nothing\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_manifest(path)


class PackRegistryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = InventoryStore(Path(self._tmp.name) / "fable.sqlite3")
        self.anilist = mock.AsyncMock()
        self.registry = PackRegistry(self.store, self.anilist, packs_dir=PACKS_DIR, pool={})
        self.manifest_path = Path(self._tmp.name) / "manifest.yaml"
        self.manifest_path.write_text(COMMUNITY_MANIFEST, encoding="utf-8")

    async def asyncTearDown(self) -> None:
        self.store.close()
        self._tmp.cleanup()

    async def test_search_matches_pack_names(self) -> None:
        self.anilist.search_characters.return_value = []

        found = await self.registry.characters([], "guild_id", search="gawr gura")

        self.assertEqual([character.key for character in found], ["vtubers:gawr-gura"])
        self.anilist.search_characters.assert_awaited_once_with("gawr gura")

    async def test_search_ranks_by_similarity_then_popularity(self) -> None:
        self.anilist.search_media.return_value = [
            Media(id="1", pack_id="anilist", title=Alias(romaji="Hololive"), popularity=10),
            Media(id="2", pack_id="anilist", title=Alias(romaji="hololive"), popularity=500),
            Media(id="3", pack_id="anilist", title=Alias(romaji="Something Else"), popularity=900_000),
        ]

        hits = await self.registry.search_many("media", "Hololive", "guild_id")

        self.assertEqual(
            [media.key for media in hits],
            ["vtubers:hololive-jp", "anilist:2", "anilist:1", "vtubers:hololive-en"],
        )

    async def test_search_below_the_threshold_finds_nothing(self) -> None:
        self.anilist.search_characters.return_value = []
        self.assertEqual(await self.registry.characters([], "guild_id", search="zzzzzz"), [])
        self.assertEqual(await self.registry.characters([], "guild_id"), [])

    async def test_builtins(self) -> None:
        packs = await self.registry.all("guild_id")
        self.assertEqual([pack.id for pack in packs], ["anilist", "vtubers"])
        self.assertEqual(await self.registry.all("guild_id", community_only=True), [])

    async def test_pack_characters_are_aggregated(self) -> None:
        found = await self.registry.characters(["vtubers:gawr-gura"], "guild_id")
        character = await self.registry.aggregate(found[0], "guild_id")

        edge = character.first_edge
        self.assertEqual(character.key, "vtubers:gawr-gura")
        self.assertEqual(edge.node.key, "vtubers:hololive-en")
        self.assertEqual(edge.node.popularity, 120000)
        self.anilist.characters.assert_not_awaited()

    async def test_builtin_characters_join_every_pool(self) -> None:
        pool = await self.registry.pool("guild_id", range_=(1000, 50000))
        self.assertEqual(sorted(entry.media_id for entry in pool), ["vtubers:hololive-en", "vtubers:hololive-jp"])

    async def test_install_and_uninstall(self) -> None:
        await self.registry.publish(self.manifest_path, "owner_id")

        await self.registry.install("guild_id", "community", "admin_id")
        packs = await self.registry.all("guild_id", community_only=True)
        self.assertEqual([pack.id for pack in packs], ["community"])
        self.assertTrue(self.registry.is_disabled("anilist:5", "guild_id"))
        self.assertFalse(self.registry.is_disabled("anilist:5", "other_guild"))
        found = await self.registry.characters(["community:hero"], "guild_id")
        self.assertEqual([character.key for character in found], ["community:hero"])

        await self.registry.uninstall("guild_id", "community")
        self.assertEqual(await self.registry.all("guild_id", community_only=True), [])
        self.assertFalse(self.registry.is_disabled("anilist:5", "guild_id"))
        self.assertEqual(await self.registry.characters(["community:hero"], "guild_id"), [])

    async def test_install_errors(self) -> None:
        with self.assertRaises(NonFatalError):
            await self.registry.install("guild_id", "missing", "admin_id")
        with self.assertRaises(NonFatalError):
            await self.registry.uninstall("guild_id", "missing")

    async def test_builtin_ids_cannot_be_published(self) -> None:
        self.manifest_path.write_text("id: vtubers\n", encoding="utf-8")
        with self.assertRaises(NonFatalError):
            await self.registry.publish(self.manifest_path)

    async def test_maintenance(self) -> None:
        registry = PackRegistry(self.store, self.anilist, community_packs=False, pool={})
        with self.assertRaises(NonFatalError):
            await registry.install("guild_id", "community", "admin_id")


if __name__ == "__main__":
    unittest.main()
