"""discord.Embed builders for gacha, merge, steal, trade and pack replies."""

from __future__ import annotations

from typing import List, Optional, Sequence

import discord

from .merge import SynthesisPreview
from .models import Character, Inventory, InventoryCharacter, Media, MediaFormat, Pack, Pull
from .packs import alias_to_array
from .rating import Rating
from .steal import StealOutcome, StealPlan
from .trade import TradeOffer
from .utils import discord_timestamp, utc_now

SMALL_STAR = "★"
COLOR_DEFAULT = 0x2980B9
COLOR_ERROR = 0xC0392B
# Indexed by stars.
COLOR_BY_RATING = {1: 0x95A5A6, 2: 0x2ECC71, 3: 0x3498DB, 4: 0x9B59B6, 5: 0xF1C40F}

MAX_TITLE_LENGTH = 40


def format_to_string(media_format: Optional[MediaFormat]) -> str:
    if media_format is None or media_format is MediaFormat.MUSIC:
        return ""
    if media_format in (MediaFormat.TV_SHORT, MediaFormat.OVA, MediaFormat.ONA):
        return "Short"
    if media_format is MediaFormat.VIDEO_GAME:
        return "Video Game"
    if media_format is MediaFormat.TV:
        return "Anime"
    return media_format.value.replace("_", " ").capitalize()


def media_to_string(media: Media) -> str:
    titles = alias_to_array(media.title, MAX_TITLE_LENGTH)
    title = titles[0] if titles else media.id
    label = format_to_string(media.format)
    return f"{title} ({label})" if label else title


def character_name(character: Character, existing: Optional[InventoryCharacter] = None) -> str:
    if existing is not None and existing.nickname:
        return existing.nickname
    names = alias_to_array(character.name)
    return names[0] if names else character.key


def character_embed(
    character: Character,
    *,
    rating: int,
    existing: Optional[InventoryCharacter] = None,
    description: Optional[str] = None,
) -> discord.Embed:
    embed = discord.Embed(description=description, color=COLOR_BY_RATING.get(rating, COLOR_DEFAULT))
    name = f"{rating}{SMALL_STAR} **{character_name(character, existing)}**"
    edge = character.first_edge
    if edge is not None:
        embed.add_field(name=media_to_string(edge.node), value=name, inline=False)
    else:
        embed.description = f"{description}\n{name}" if description else name
    image = existing.image if existing is not None and existing.image else None
    if image is None and character.images:
        image = character.images[0]
    if image:
        embed.set_thumbnail(url=image)
    return embed


def pull_embed(pull: Pull, *, author_name: Optional[str] = None) -> discord.Embed:
    embed = discord.Embed(
        title=Rating(stars=pull.rating).emotes,
        description=f"**{character_name(pull.character)}**",
        color=COLOR_BY_RATING.get(pull.rating, COLOR_DEFAULT),
        timestamp=utc_now(),
    )
    if author_name:
        embed.set_author(name=author_name)
    embed.add_field(name="Media", value=media_to_string(pull.media), inline=False)
    if pull.character.images:
        embed.set_image(url=pull.character.images[0])

    footer: List[str] = []
    if pull.remaining is not None:
        footer.append(f"{pull.remaining} pulls left")
    if pull.guarantees:
        footer.append("guaranteed: " + ", ".join(f"{stars}{SMALL_STAR}" for stars in pull.guarantees))
    if pull.popularity_chance is not None:
        footer.append(f"popularity roll {pull.popularity_chance}%")
    if pull.role_chance is not None and pull.role is not None:
        footer.append(f"{pull.role.value.lower()} roll {pull.role_chance}%")
    footer.append(f"pool of {pull.pool}")
    embed.set_footer(text=" | ".join(footer))
    return embed


def likes_content(likes: Optional[Sequence[str]]) -> Optional[str]:
    if not likes:
        return None
    return " ".join(f"<@{user_id}>" for user_id in likes)


def no_pulls_embed(recharge_timestamp: str) -> discord.Embed:
    return discord.Embed(
        description=f"You don't have any more pulls!\nRecharge <t:{recharge_timestamp}:R>",
        color=COLOR_ERROR,
    )


def inventory_embed(inventory: Inventory, guarantees: Sequence[int], cards: int) -> discord.Embed:
    embed = discord.Embed(title="Inventory", color=COLOR_DEFAULT, timestamp=utc_now())
    embed.add_field(name="Available Pulls", value=str(inventory.available_pulls), inline=True)
    if inventory.recharge_timestamp is not None:
        embed.add_field(
            name="Next Recharge",
            value=f"<t:{discord_timestamp(inventory.recharge_timestamp)}:R>",
            inline=True,
        )
    if guarantees:
        embed.add_field(
            name="Guaranteed Pulls",
            value=", ".join(f"{stars}{SMALL_STAR}" for stars in guarantees),
            inline=False,
        )
    embed.add_field(name="Characters", value=str(cards), inline=True)
    return embed


def merge_preview_embeds(preview: SynthesisPreview) -> List[discord.Embed]:
    embeds = [
        discord.Embed(
            description=(
                f"Sacrifice **{len(preview.sacrifices)}** characters "
                f"for a {preview.target}{SMALL_STAR} character?"
            ),
            color=COLOR_DEFAULT,
        )
    ]
    for character, card in preview.highlights:
        embeds.append(character_embed(character, rating=card.rating, existing=card))
    if preview.others:
        embeds.append(discord.Embed(description=f"_+{preview.others} others..._"))
    return embeds


def steal_plan_embeds(plan: StealPlan) -> List[discord.Embed]:
    return [
        character_embed(
            plan.character,
            rating=plan.card.rating,
            existing=plan.card,
            description=f"<@{plan.card.user_id}>",
        ),
        discord.Embed(description=f"Your chance of success is **{plan.chance:.2f}%**", color=COLOR_DEFAULT),
    ]


def steal_outcome_embeds(outcome: StealOutcome) -> List[discord.Embed]:
    plan = outcome.plan
    cooldown = f"<t:{discord_timestamp(outcome.cooldown_until)}:R>"
    if outcome.success:
        headline = discord.Embed(description="**You Succeeded!**", color=COLOR_BY_RATING[5])
    else:
        headline = discord.Embed(description="**You Failed!**", color=COLOR_ERROR)
    return [
        headline,
        character_embed(plan.character, rating=plan.card.rating, existing=plan.card),
        discord.Embed(description=f"You can steal again {cooldown}"),
    ]


def stolen_notice_embed(outcome: StealOutcome) -> discord.Embed:
    return discord.Embed(
        description=f"**{character_name(outcome.plan.character)}** was stolen from you!",
        color=COLOR_ERROR,
    )


def trade_offer_embeds(offer: TradeOffer) -> List[discord.Embed]:
    def names(characters: Sequence[Character]) -> str:
        return "\n".join(f"**{character_name(character)}**" for character in characters) or "-"

    if offer.is_gift:
        return [discord.Embed(description=f"<@{offer.user_id}> sent <@{offer.target_id}> a gift:\n{names(offer.give)}")]
    embed = discord.Embed(
        description=f"<@{offer.target_id}>, <@{offer.user_id}> is offering a trade.",
        color=COLOR_DEFAULT,
    )
    embed.add_field(name="You receive", value=names(offer.give), inline=True)
    embed.add_field(name="You give", value=names(offer.take), inline=True)
    return [embed]


def pack_embed(pack: Pack) -> discord.Embed:
    manifest = pack.manifest
    embed = discord.Embed(title=manifest.title or manifest.id, description=manifest.description or None)
    embed.add_field(name="Id", value=f"`{manifest.id}`", inline=True)
    embed.add_field(name="Characters", value=str(len(manifest.characters)), inline=True)
    if manifest.author:
        embed.set_footer(text=manifest.author)
    return embed


def message_embed(message: str) -> discord.Embed:
    return discord.Embed(description=message, color=COLOR_DEFAULT)


def internal_error_embed(ref_id: str) -> discord.Embed:
    return discord.Embed(
        description=f"An Internal Error occurred and was reported.\n```ref_id: {ref_id}```",
        color=COLOR_ERROR,
    )


__all__ = [
    "character_embed",
    "format_to_string",
    "internal_error_embed",
    "inventory_embed",
    "likes_content",
    "media_to_string",
    "merge_preview_embeds",
    "message_embed",
    "no_pulls_embed",
    "pack_embed",
    "pull_embed",
    "steal_outcome_embeds",
    "steal_plan_embeds",
    "stolen_notice_embed",
    "trade_offer_embeds",
]
