"""Trades and gifts between two members of a guild."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Sequence, Tuple

from .errors import NonFatalError, StoreError
from .models import Character
from .packs import PackRegistry, alias_to_array
from .store import InventoryStore
from .utils import utc_now

logger = logging.getLogger("fablebot.trade")

_STORE_MESSAGES = {
    "CHARACTER_IN_PARTY": "**{name}** is in a party and can't be traded.",
    "CHARACTER_NOT_OWNED": "**{name}** isn't owned by the right member anymore.",
    "CHARACTER_NOT_FOUND": "**{name}** hasn't been found by anyone yet.",
}


@dataclass
class TradeOffer:
    guild_id: str
    user_id: str
    target_id: str
    give: List[Character]
    take: List[Character] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def give_ids(self) -> List[str]:
        return [character.key for character in self.give]

    @property
    def take_ids(self) -> List[str]:
        return [character.key for character in self.take]

    @property
    def is_gift(self) -> bool:
        return not self.take


def _name(character: Character) -> str:
    names = alias_to_array(character.name)
    return names[0] if names else character.key


class Trade:
    def __init__(self, packs: PackRegistry, store: InventoryStore, *, enabled: bool = True) -> None:
        self.packs = packs
        self.store = store
        self.enabled = enabled

    async def _resolve(self, guild_id: str, ids: Sequence[str]) -> List[Character]:
        resolved: Dict[str, Character] = {}
        for literal in ids:
            found = await self.packs.characters([literal], guild_id)
            if not found:
                raise NonFatalError(f"Found no character matching `{literal}`.")
            character = await self.packs.aggregate(found[0], guild_id)
            edge = character.first_edge
            if self.packs.is_disabled(character.key, guild_id) or (
                edge is not None and self.packs.is_disabled(edge.node.key, guild_id)
            ):
                raise NonFatalError(f"Found no character matching `{literal}`.")
            resolved.setdefault(character.key, character)
        return list(resolved.values())

    async def _check_owned(self, guild_id: str, owner_id: str, characters: Sequence[Character]) -> None:
        inventory = await self.store.get_inventory(guild_id, owner_id)
        for character in characters:
            card = await self.store.get_character(guild_id, character.key)
            if card is None or card.inventory_id != inventory.id:
                raise NonFatalError(f"<@{owner_id}> doesn't have **{_name(character)}**.")
            if card.id in inventory.party:
                raise NonFatalError(f"**{_name(character)}** is in <@{owner_id}>'s party and can't be traded.")

    async def pre(
        self,
        guild_id: str,
        user_id: str,
        target_id: str,
        give: Sequence[str],
        take: Sequence[str] = (),
    ) -> TradeOffer:
        """Validate an offer; ``take`` empty makes it a gift."""
        if user_id == target_id:
            raise NonFatalError("You can't trade with yourself!" if take else "You can't gift yourself!")
        if not self.enabled:
            raise NonFatalError("Trading is under maintenance, try again later.")
        if not give:
            raise NonFatalError("You need to offer at least one character.")

        offer = TradeOffer(
            guild_id=guild_id,
            user_id=user_id,
            target_id=target_id,
            give=await self._resolve(guild_id, give),
            take=await self._resolve(guild_id, take),
        )
        await self._check_owned(guild_id, user_id, offer.give)
        if offer.take:
            await self._check_owned(guild_id, target_id, offer.take)
        return offer

    async def _execute(self, offer: TradeOffer) -> Tuple[str, str]:
        try:
            await self.store.trade_characters(
                offer.guild_id,
                offer.user_id,
                offer.target_id,
                give_ids=offer.give_ids,
                take_ids=offer.take_ids,
            )
        except StoreError as exc:
            template = _STORE_MESSAGES.get(exc.code)
            if template is None:
                raise
            by_key = {character.key: character for character in [*offer.give, *offer.take]}
            character = by_key.get(str(exc.detail))
            raise NonFatalError(template.format(name=_name(character) if character else exc.detail)) from exc
        return offer.user_id, offer.target_id

    async def give(self, guild_id: str, user_id: str, target_id: str, give: Sequence[str]) -> TradeOffer:
        """Gift cards right away; only the giver has to agree."""
        offer = await self.pre(guild_id, user_id, target_id, give)
        await self._execute(offer)
        logger.info("User %s gifted %s to %s in guild %s", user_id, offer.give_ids, target_id, guild_id)
        return offer

    async def accepted(self, offer: TradeOffer, accepting_user_id: str) -> TradeOffer:
        """Complete a pending trade once its target accepts."""
        if accepting_user_id != offer.target_id:
            raise NonFatalError("Only the member the trade was offered to can accept it.")
        if not self.enabled:
            raise NonFatalError("Trading is under maintenance, try again later.")
        await self._execute(offer)
        logger.info(
            "Trade in guild %s: %s gave %s to %s for %s",
            offer.guild_id,
            offer.user_id,
            offer.give_ids,
            offer.target_id,
            offer.take_ids,
        )
        return offer


__all__ = ["Trade", "TradeOffer"]
