"""Discord prefix commands wiring the gacha engine to chat."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import discord
from discord.ext import commands

from . import embeds
from .anilist import AniListClient
from .cache import GuildPackCache
from .config import FableConfig
from .errors import CatalogRateLimitError, NoPullsError, NonFatalError, PoolError, StoreError
from .gacha import Gacha
from .merge import Synthesis
from .packs import PackRegistry, parse_id
from .rating import MAX_STARS, MIN_STARS
from .reporting import capture_exception
from .steal import Steal, StealPlan
from .store import CUSTOM_FIELDS, PARTY_SIZE, InventoryStore
from .trade import Trade, TradeOffer
from .utils import is_admin, parse_int

logger = logging.getLogger("fablebot.commands")

# (guild id, user id)
PendingKey = Tuple[str, str]

MAX_NICKNAME_LENGTH = 32

HELP_TEXT = (
    "**FableBot commands**\n"
    "`{p}gacha` pull a random character (`{p}q` works too)\n"
    "`{p}guaranteed <stars>` spend a guaranteed pull\n"
    "`{p}pulls` show your pulls and guarantees\n"
    "`{p}merge <2-5|min|max>` preview a merge, then `{p}merge confirm`\n"
    "`{p}steal <name|pack:id>` check your chances, then `{p}steal confirm`\n"
    "`{p}give @member <pack:id> ...` gift characters (quote names with spaces)\n"
    "`{p}trade @member <pack:id> ... for <pack:id> ...` offer a trade, accepted with `{p}accept @member`\n"
    "`{p}like [media] <name|pack:id>` / `{p}unlike [media] <name|pack:id>` get pinged when a character is pulled\n"
    "`{p}party <1-5> [name|pack:id]` protect characters from merges and thieves\n"
    "`{p}customize <name|pack:id> nickname|image [value]` personalize a card you own\n"
    "`{p}packs [install|uninstall] <id>` manage community packs (admins)"
)


class FableManager:
    """Owns the store, catalog client and orchestrators; registers the bot's commands."""

    def __init__(
        self,
        *,
        bot: commands.Bot,
        config: FableConfig,
        store: Optional[InventoryStore] = None,
        anilist: Optional[AniListClient] = None,
        packs: Optional[PackRegistry] = None,
    ) -> None:
        self.bot = bot
        self.config = config
        self.store = store or InventoryStore(config.db_path)
        self.anilist = anilist or AniListClient(config.anilist_url)
        self.packs = packs or PackRegistry(
            self.store,
            self.anilist,
            cache=GuildPackCache(),
            packs_dir=config.packs_dir,
            pool_path=config.pool_path,
            community_packs=config.community_packs,
        )
        self.gacha = Gacha(self.packs, self.store)
        self.synthesis = Synthesis(self.gacha, self.packs, self.store, enabled=config.synthesis)
        self.stealing = Steal(self.packs, self.store, enabled=config.stealing)
        self.trading = Trade(self.packs, self.store, enabled=config.trading)

        self._pending_merges: Dict[PendingKey, int] = {}
        self._pending_steals: Dict[PendingKey, StealPlan] = {}
        # Keyed by (guild id, target user id, offering user id).
        self._pending_trades: Dict[Tuple[str, str, str], TradeOffer] = {}

    async def close(self) -> None:
        await self.anilist.aclose()
        self.store.close()

    # Plumbing -----------------------------------------------------------

    def _register_command(self, command: commands.Command) -> None:
        existing = self.bot.get_command(command.name)
        if existing:
            self.bot.remove_command(existing.name)
        self.bot.add_command(command)

    async def _reply(
        self,
        ctx: commands.Context,
        *,
        content: Optional[str] = None,
        embed: Optional[discord.Embed] = None,
        embed_list: Optional[List[discord.Embed]] = None,
    ) -> None:
        await ctx.reply(
            content=content,
            embeds=embed_list or ([embed] if embed else []),
            mention_author=False,
        )

    async def _guarded(self, ctx: commands.Context, handler: Callable[[str, str], Awaitable[None]]) -> None:
        """Run ``handler(guild_id, user_id)`` and turn failures into replies."""
        if ctx.guild is None:
            await ctx.reply("Run this command inside a server.", mention_author=False)
            return
        guild_id, user_id = str(ctx.guild.id), str(ctx.author.id)
        try:
            await handler(guild_id, user_id)
        except NoPullsError as exc:
            await self._reply(ctx, embed=embeds.no_pulls_embed(exc.recharge_timestamp))
        except NonFatalError as exc:
            await self._reply(ctx, embed=embeds.message_embed(str(exc)))
        except PoolError:
            await self._reply(ctx, embed=embeds.message_embed("There are no more characters left to pull."))
        except CatalogRateLimitError:
            await self._reply(ctx, embed=embeds.message_embed("The catalog is busy right now, try again in a minute."))
        except discord.HTTPException:
            logger.warning("Failed to deliver reply for %s in guild %s", ctx.command, guild_id, exc_info=True)
        except Exception as exc:  # pylint: disable=broad-except
            ref_id = capture_exception(
                exc,
                {"command": ctx.command, "guild": guild_id, "user": user_id},
            )
            await self._reply(ctx, embed=embeds.internal_error_embed(ref_id))

    def _require_gacha(self) -> None:
        if not self.config.gacha:
            raise NonFatalError("Gacha is under maintenance, try again later.")

    async def _resolve_id(self, literal: str, guild_id: str, kind: str = "characters") -> str:
        """Return ``pack:id`` literals as they are; anything else is searched by name."""
        literal = literal.strip()
        pack_id, id_ = parse_id(literal.lower())
        if pack_id and id_:
            return f"{pack_id}:{id_}"
        noun = "character" if kind == "characters" else "media"
        if not literal:
            raise NonFatalError(f"Name a {noun}, or give its id like `anilist:1`.")
        if kind == "characters":
            found = await self.packs.characters([], guild_id, search=literal)
        else:
            found = await self.packs.media([], guild_id, search=literal)
        if not found:
            raise NonFatalError(f"Found no {noun} named `{literal}`.")
        return found[0].key

    # Registration -------------------------------------------------------

    def register_commands(self) -> None:
        existing_help = self.bot.get_command("help")
        if existing_help:
            self.bot.remove_command(existing_help.name)

        @commands.command(name="help")
        async def fable_help(ctx: commands.Context) -> None:
            await ctx.reply(HELP_TEXT.format(p=self.config.command_prefix), mention_author=False)

        @commands.command(name="gacha", aliases=["q", "pull"])
        async def fable_gacha(ctx: commands.Context) -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_pull(ctx, guild_id, user_id))

        @commands.command(name="guaranteed")
        async def fable_guaranteed(ctx: commands.Context, stars: int) -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_pull(ctx, guild_id, user_id, stars))

        @commands.command(name="pulls", aliases=["now"])
        async def fable_pulls(ctx: commands.Context) -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_pulls(ctx, guild_id, user_id))

        @commands.command(name="merge", aliases=["synthesize"])
        async def fable_merge(ctx: commands.Context, selection: str = "min") -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_merge(ctx, guild_id, user_id, selection))

        @commands.command(name="steal")
        async def fable_steal(ctx: commands.Context, *, selection: str = "") -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_steal(ctx, guild_id, user_id, selection))

        @commands.command(name="give", aliases=["gift"])
        async def fable_give(ctx: commands.Context, member: Optional[discord.Member] = None, *ids: str) -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_give(ctx, guild_id, user_id, member, ids))

        @commands.command(name="trade")
        async def fable_trade(ctx: commands.Context, member: Optional[discord.Member] = None, *ids: str) -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_trade(ctx, guild_id, user_id, member, ids))

        @commands.command(name="accept")
        async def fable_accept(ctx: commands.Context, member: Optional[discord.Member] = None) -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_accept(ctx, guild_id, user_id, member))

        @commands.command(name="like")
        async def fable_like(ctx: commands.Context, *, selection: str = "") -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_like(ctx, guild_id, user_id, selection, True))

        @commands.command(name="unlike")
        async def fable_unlike(ctx: commands.Context, *, selection: str = "") -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_like(ctx, guild_id, user_id, selection, False))

        @commands.command(name="party")
        async def fable_party(ctx: commands.Context, slot: Optional[int] = None, *, selection: str = "") -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_party(ctx, guild_id, user_id, slot, selection))

        @commands.command(name="customize", aliases=["nick"])
        async def fable_customize(ctx: commands.Context, selection: str = "", field: str = "", *, value: str = "") -> None:
            await self._guarded(
                ctx, lambda guild_id, user_id: self.command_customize(ctx, guild_id, user_id, selection, field, value)
            )

        @commands.command(name="packs")
        async def fable_packs(ctx: commands.Context, action: str = "list", pack_id: str = "") -> None:
            await self._guarded(ctx, lambda guild_id, user_id: self.command_packs(ctx, guild_id, user_id, action, pack_id))

        for command in (
            fable_help,
            fable_gacha,
            fable_guaranteed,
            fable_pulls,
            fable_merge,
            fable_steal,
            fable_give,
            fable_trade,
            fable_accept,
            fable_like,
            fable_unlike,
            fable_party,
            fable_customize,
            fable_packs,
        ):
            self._register_command(command)

    # Handlers -----------------------------------------------------------

    async def command_pull(
        self,
        ctx: commands.Context,
        guild_id: str,
        user_id: str,
        guarantee: Optional[int] = None,
    ) -> None:
        self._require_gacha()
        if guarantee is not None and not MIN_STARS <= guarantee <= MAX_STARS:
            raise NonFatalError(f"Guaranteed pulls are between {MIN_STARS} and {MAX_STARS} stars.")
        try:
            pull = await self.gacha.rng_pull(guild_id, user_id, guarantee=guarantee)
        except PoolError as exc:
            if guarantee is None:
                raise
            raise NonFatalError(f"There are no more {guarantee}★ characters left.") from exc
        await self._reply(
            ctx,
            content=embeds.likes_content(pull.likes),
            embed=embeds.pull_embed(pull, author_name=ctx.author.display_name),
        )

    async def command_pulls(self, ctx: commands.Context, guild_id: str, user_id: str) -> None:
        inventory = await self.store.recharge_pulls(guild_id, user_id)
        user = await self.store.get_user(user_id)
        cards = await self.store.get_user_characters(inventory)
        await self._reply(ctx, embed=embeds.inventory_embed(inventory, user.guarantees, len(cards)))

    async def command_merge(self, ctx: commands.Context, guild_id: str, user_id: str, selection: str) -> None:
        key = (guild_id, user_id)
        selection = selection.strip().lower()
        if selection == "confirm":
            target = self._pending_merges.pop(key, None)
            if target is None:
                raise NonFatalError(f"Preview a merge with `{self.config.command_prefix}merge` first.")
            pull = await self.synthesis.confirmed(guild_id, user_id, target)
            await self._reply(
                ctx,
                content=embeds.likes_content(pull.likes),
                embed=embeds.pull_embed(pull, author_name=ctx.author.display_name),
            )
            return

        if selection in ("min", "max"):
            preview = await self.synthesis.synthesize(guild_id, user_id, selection)
        else:
            target = parse_int(selection)
            if target is None or not 2 <= target <= MAX_STARS:
                raise NonFatalError("Merge into 2 to 5 stars, or use `min` / `max`.")
            preview = await self.synthesis.synthesize(guild_id, user_id, "target", target)
        self._pending_merges[key] = preview.target
        await self._reply(ctx, embed_list=embeds.merge_preview_embeds(preview)[:10])

    async def command_steal(self, ctx: commands.Context, guild_id: str, user_id: str, selection: str) -> None:
        key = (guild_id, user_id)
        if selection.strip().lower() == "confirm":
            plan = self._pending_steals.pop(key, None)
            if plan is None:
                raise NonFatalError(f"Pick a character with `{self.config.command_prefix}steal <pack:id>` first.")
            outcome = await self.stealing.attempt(guild_id, user_id, plan.card.id, plan.chance)
            await self._reply(ctx, embed_list=embeds.steal_outcome_embeds(outcome))
            if outcome.success:
                await self._notify(outcome.plan.card.user_id, embeds.stolen_notice_embed(outcome))
            return

        plan = await self.stealing.pre(guild_id, user_id, await self._resolve_id(selection, guild_id))
        self._pending_steals[key] = plan
        await self._reply(ctx, embed_list=embeds.steal_plan_embeds(plan))

    async def _notify(self, user_id: str, embed: discord.Embed) -> None:
        user = self.bot.get_user(int(user_id))
        if user is None:
            return
        try:
            await user.send(embed=embed)
        except discord.Forbidden:
            logger.debug("User %s does not accept DMs", user_id)

    async def command_give(
        self,
        ctx: commands.Context,
        guild_id: str,
        user_id: str,
        member: Optional[discord.Member],
        ids: Sequence[str],
    ) -> None:
        if member is None or not ids:
            raise NonFatalError(f"Usage: `{self.config.command_prefix}give @member <pack:id> ...`")
        offer = await self.trading.give(
            guild_id,
            user_id,
            str(member.id),
            [await self._resolve_id(literal, guild_id) for literal in ids],
        )
        await self._reply(ctx, embed_list=embeds.trade_offer_embeds(offer))

    async def command_trade(
        self,
        ctx: commands.Context,
        guild_id: str,
        user_id: str,
        member: Optional[discord.Member],
        ids: Sequence[str],
    ) -> None:
        usage = f"Usage: `{self.config.command_prefix}trade @member <pack:id> ... for <pack:id> ...`"
        if member is None or "for" not in ids:
            raise NonFatalError(usage)
        split = list(ids).index("for")
        give, take = list(ids[:split]), list(ids[split + 1 :])
        if not give or not take:
            raise NonFatalError(usage)
        offer = await self.trading.pre(
            guild_id,
            user_id,
            str(member.id),
            [await self._resolve_id(literal, guild_id) for literal in give],
            [await self._resolve_id(literal, guild_id) for literal in take],
        )
        self._pending_trades[(guild_id, offer.target_id, user_id)] = offer
        await self._reply(ctx, content=member.mention, embed_list=embeds.trade_offer_embeds(offer))

    async def command_accept(
        self,
        ctx: commands.Context,
        guild_id: str,
        user_id: str,
        member: Optional[discord.Member],
    ) -> None:
        if member is None:
            raise NonFatalError(f"Usage: `{self.config.command_prefix}accept @member`")
        offer = self._pending_trades.pop((guild_id, user_id, str(member.id)), None)
        if offer is None:
            raise NonFatalError(f"{member.display_name} has no pending trade with you.")
        await self.trading.accepted(offer, user_id)
        await self._reply(ctx, embed=embeds.message_embed("Trade complete!"))

    async def command_like(
        self,
        ctx: commands.Context,
        guild_id: str,
        user_id: str,
        selection: str,
        like: bool,
    ) -> None:
        """``like <name|pack:id>`` targets a character, ``like media <name|pack:id>`` a whole media."""
        head, _, rest = selection.strip().partition(" ")
        if head.lower() == "media":
            target = {"media_id": await self._resolve_id(rest, guild_id, "media")}
            noun = "media"
        else:
            target = {"character_id": await self._resolve_id(selection, guild_id)}
            noun = "character"
        if like:
            changed = await self.store.like(user_id, **target)
            message = "Liked!" if changed else f"You already like this {noun}."
        else:
            changed = await self.store.unlike(user_id, **target)
            message = "Unliked!" if changed else f"You don't like this {noun}."
        await self._reply(ctx, embed=embeds.message_embed(message))

    async def command_party(
        self,
        ctx: commands.Context,
        guild_id: str,
        user_id: str,
        slot: Optional[int],
        selection: str,
    ) -> None:
        if slot is None or not 1 <= slot <= PARTY_SIZE:
            raise NonFatalError(f"Usage: `{self.config.command_prefix}party <1-{PARTY_SIZE}> [pack:id]`")
        character_id = await self._resolve_id(selection, guild_id) if selection else None
        try:
            inventory = await self.store.set_party_member(guild_id, user_id, slot, character_id)
        except StoreError as exc:
            if exc.code == "CHARACTER_NOT_OWNED":
                raise NonFatalError("You don't have that character.") from exc
            raise
        lines = [f"{index}. `{member}`" if member else f"{index}. -" for index, member in enumerate(inventory.party, start=1)]
        await self._reply(ctx, embed=embeds.message_embed("\n".join(lines)))

    async def command_customize(
        self,
        ctx: commands.Context,
        guild_id: str,
        user_id: str,
        selection: str,
        field: str,
        value: str,
    ) -> None:
        """Set a card's nickname or image; an empty value resets it."""
        field = field.strip().lower()
        if not selection or field not in CUSTOM_FIELDS:
            raise NonFatalError(f"Usage: `{self.config.command_prefix}customize <name|pack:id> nickname|image [value]`")
        value = value.strip()
        if field == "nickname" and len(value) > MAX_NICKNAME_LENGTH:
            raise NonFatalError(f"Nicknames can be at most {MAX_NICKNAME_LENGTH} characters.")
        if field == "image" and value and not value.startswith(("https://", "http://")):
            raise NonFatalError("Images have to be a link.")
        character_id = await self._resolve_id(selection, guild_id)
        try:
            await self.store.customize_character(guild_id, user_id, character_id, field, value or None)
        except StoreError as exc:
            if exc.code == "CHARACTER_NOT_OWNED":
                raise NonFatalError("You don't have that character.") from exc
            raise
        message = f"Updated the {field} of `{character_id}`." if value else f"Reset the {field} of `{character_id}`."
        await self._reply(ctx, embed=embeds.message_embed(message))

    async def command_packs(
        self,
        ctx: commands.Context,
        guild_id: str,
        user_id: str,
        action: str,
        pack_id: str,
    ) -> None:
        action = action.strip().lower()
        if action == "list":
            installed = await self.packs.all(guild_id, community_only=True)
            if not installed:
                await self._reply(ctx, embed=embeds.message_embed("No community packs are installed."))
                return
            await self._reply(ctx, embed_list=[embeds.pack_embed(pack) for pack in installed[:10]])
            return

        if action not in ("install", "uninstall") or not pack_id:
            raise NonFatalError(f"Usage: `{self.config.command_prefix}packs [install|uninstall] <id>`")
        if not is_admin(ctx.author):
            raise NonFatalError("Only a server administrator can manage packs.")

        if action == "install":
            pack = await self.packs.install(guild_id, pack_id.strip(), user_id)
            headline = "Installed"
        else:
            pack = await self.packs.uninstall(guild_id, pack_id.strip())
            headline = "Uninstalled\n**All characters from this pack are now disabled**"
        await self._reply(ctx, embed_list=[embeds.message_embed(headline), embeds.pack_embed(pack)])


def setup_fable_mode(bot: commands.Bot, config: FableConfig) -> FableManager:
    """Factory used by bot.py to bootstrap the game."""
    manager = FableManager(bot=bot, config=config)
    manager.register_commands()
    return manager


__all__ = ["FableManager", "setup_fable_mode"]
