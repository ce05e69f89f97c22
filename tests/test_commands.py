import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fablebot.commands import FableManager
from fablebot.config import FableConfig
from fablebot.errors import NonFatalError, NoPullsError, PoolError
from fablebot.store import InventoryStore


def _config(base: Path) -> FableConfig:
    return FableConfig(
        token=None,
        command_prefix="!",
        db_path=base / "fable.sqlite3",
        pool_path=base / "pool.json",
        packs_dir=base / "packs",
        anilist_url="https://graphql.test",
        log_level="INFO",
    )


def _ctx(guild_id=1, author_id=2):
    ctx = mock.MagicMock()
    ctx.guild.id = guild_id
    ctx.author.id = author_id
    ctx.reply = mock.AsyncMock()
    return ctx


class FableManagerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name)
        self.bot = mock.MagicMock()
        self.bot.get_command.return_value = None
        self.manager = FableManager(
            bot=self.bot,
            config=_config(base),
            store=InventoryStore(base / "fable.sqlite3"),
            anilist=mock.AsyncMock(),
            packs=mock.AsyncMock(),
        )

    async def asyncTearDown(self) -> None:
        await self.manager.close()
        self._tmp.cleanup()

    def _replied_embed(self, ctx):
        _, kwargs = ctx.reply.call_args
        return kwargs["embeds"][0]

    def test_commands_are_registered(self) -> None:
        self.manager.register_commands()

        names = {call.args[0].name for call in self.bot.add_command.call_args_list}
        self.assertIn("gacha", names)
        self.assertIn("merge", names)
        self.assertIn("steal", names)
        self.assertIn("packs", names)
        self.assertIn("customize", names)
        self.assertEqual(len(names), 14)

    async def test_non_fatal_errors_become_replies(self) -> None:
        ctx = _ctx()

        async def handler(guild_id, user_id):
            self.assertEqual((guild_id, user_id), ("1", "2"))
            raise NonFatalError("nope")

        await self.manager._guarded(ctx, handler)

        self.assertEqual(self._replied_embed(ctx).description, "nope")

    async def test_no_pulls(self) -> None:
        ctx = _ctx()

        async def handler(guild_id, user_id):
            raise NoPullsError("1700000000")

        await self.manager._guarded(ctx, handler)

        self.assertIn("<t:1700000000:R>", self._replied_embed(ctx).description)

    async def test_unexpected_errors_are_reported(self) -> None:
        ctx = _ctx()

        async def handler(guild_id, user_id):
            raise RuntimeError("boom")

        with self.assertLogs("fablebot.errors", level="ERROR"):
            await self.manager._guarded(ctx, handler)

        self.assertIn("ref_id", self._replied_embed(ctx).description)

    async def test_direct_messages_are_refused(self) -> None:
        ctx = _ctx()
        ctx.guild = None
        handler = mock.AsyncMock()

        await self.manager._guarded(ctx, handler)

        handler.assert_not_awaited()
        ctx.reply.assert_awaited_once()

    async def test_trade_arguments_are_split(self) -> None:
        ctx = _ctx()
        member = mock.MagicMock()
        member.id = 3
        self.manager.trading = mock.AsyncMock()
        self.manager.trading.pre.return_value.target_id = "3"

        with mock.patch("fablebot.commands.embeds.trade_offer_embeds", return_value=[]):
            await self.manager.command_trade(ctx, "1", "2", member, ("anilist:1", "for", "Vtubers:Gawr-Gura"))

        self.manager.trading.pre.assert_awaited_once_with("1", "2", "3", ["anilist:1"], ["vtubers:gawr-gura"])

    async def test_unknown_names(self) -> None:
        self.manager.packs.characters.return_value = []
        with self.assertRaises(NonFatalError) as ctx:
            await self.manager.command_like(_ctx(), "1", "2", "not a character", True)
        self.assertEqual(str(ctx.exception), "Found no character named `not a character`.")

        with self.assertRaises(NonFatalError):
            await self.manager.command_like(_ctx(), "1", "2", "", True)

    async def test_names_fall_back_to_search(self) -> None:
        self.manager.packs.characters.return_value = [mock.MagicMock(key="vtubers:gawr-gura")]

        self.assertEqual(await self.manager._resolve_id("Gawr Gura", "1"), "vtubers:gawr-gura")
        self.manager.packs.characters.assert_awaited_once_with([], "1", search="Gawr Gura")

        self.assertEqual(await self.manager._resolve_id("anilist:1", "1"), "anilist:1")
        self.manager.packs.characters.assert_awaited_once()

    async def test_like_media_by_name(self) -> None:
        self.manager.packs.media.return_value = [mock.MagicMock(key="vtubers:hololive-en")]
        ctx = _ctx()

        await self.manager.command_like(ctx, "1", "2", "media hololive english", True)

        self.manager.packs.media.assert_awaited_once_with([], "1", search="hololive english")
        self.assertEqual(self._replied_embed(ctx).description, "Liked!")
        self.assertFalse(await self.manager.store.like("2", media_id="vtubers:hololive-en"))

    async def test_guaranteed_pull_names_the_rarity(self) -> None:
        self.manager.gacha = mock.AsyncMock()
        self.manager.gacha.rng_pull.side_effect = PoolError()

        with self.assertRaises(NonFatalError) as ctx:
            await self.manager.command_pull(_ctx(), "1", "2", 3)
        self.assertEqual(str(ctx.exception), "There are no more 3★ characters left.")

        with self.assertRaises(PoolError):
            await self.manager.command_pull(_ctx(), "1", "2")

    async def test_customize(self) -> None:
        store = self.manager.store
        await store.add_character("1", "2", character_id="anilist:1", media_id="anilist:10", rating=2)

        await self.manager.command_customize(_ctx(), "1", "2", "anilist:1", "Nickname", "Shark")
        self.assertEqual((await store.get_character("1", "anilist:1")).nickname, "Shark")

        await self.manager.command_customize(_ctx(), "1", "2", "anilist:1", "nickname", "")
        self.assertIsNone((await store.get_character("1", "anilist:1")).nickname)

        with self.assertRaises(NonFatalError):
            await self.manager.command_customize(_ctx(), "1", "2", "anilist:1", "image", "not a link")
        with self.assertRaises(NonFatalError):
            await self.manager.command_customize(_ctx(), "1", "3", "anilist:1", "nickname", "Thief")

    async def test_merge_confirm_needs_a_preview(self) -> None:
        with self.assertRaises(NonFatalError):
            await self.manager.command_merge(_ctx(), "1", "2", "confirm")


if __name__ == "__main__":
    unittest.main()
