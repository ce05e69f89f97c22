"""Stealing cards from other members of the same guild."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .errors import NonFatalError, StoreError
from .models import Character, Inventory, InventoryCharacter
from .packs import PackRegistry, alias_to_array
from .store import InventoryStore
from .utils import diff_in_days, discord_timestamp, utc_now

logger = logging.getLogger("fablebot.steal")

STEAL_COOLDOWN_HOURS = 3
# Owners idle at least this long lose their party's protection.
INACTIVE_PARTY_DAYS = 14
MAX_CHANCE = 90
NEVER_PULLED_DAYS = 1000

BASE_CHANCES = {5: 1, 4: 3, 3: 15, 2: 25, 1: 50}

_random = secrets.SystemRandom()


def get_inactive_days(inventory: Optional[Inventory], now: Optional[datetime] = None) -> int:
    if inventory is None or inventory.last_pull is None:
        return NEVER_PULLED_DAYS
    return diff_in_days(now or utc_now(), inventory.last_pull)


def get_chances(rating: int, inactive_days: int) -> int:
    chance = BASE_CHANCES.get(rating, BASE_CHANCES[1])
    if inactive_days >= 30:
        chance += 100
    elif inactive_days >= 14:
        chance += 50
    elif inactive_days >= 7:
        chance += 25
    return min(chance, MAX_CHANCE)


def get_random_float() -> float:
    return _random.random()


@dataclass
class StealPlan:
    character: Character
    card: InventoryCharacter
    victim: Inventory
    chance: int

    @property
    def name(self) -> str:
        names = alias_to_array(self.character.name)
        return names[0] if names else self.character.id


@dataclass
class StealOutcome:
    plan: StealPlan
    success: bool
    cooldown_until: datetime


class Steal:
    def __init__(self, packs: PackRegistry, store: InventoryStore, *, enabled: bool = True) -> None:
        self.packs = packs
        self.store = store
        self.enabled = enabled

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise NonFatalError("Stealing is under maintenance, try again later.")

    async def _check_cooldown(self, guild_id: str, user_id: str) -> Inventory:
        inventory = await self.store.get_inventory(guild_id, user_id)
        if inventory.steal_timestamp and inventory.steal_timestamp > utc_now():
            raise NonFatalError(
                f"Steal is on cooldown, try again <t:{discord_timestamp(inventory.steal_timestamp)}:R>"
            )
        return inventory

    async def pre(self, guild_id: str, user_id: str, character_id: str) -> StealPlan:
        """Look up the card and its owner, and compute the thief's chance of success."""
        self._require_enabled()
        await self._check_cooldown(guild_id, user_id)

        found = await self.packs.characters([character_id], guild_id)
        if not found:
            raise NonFatalError("Found no character with that id.")
        character = await self.packs.aggregate(found[0], guild_id)
        edge = character.first_edge
        if self.packs.is_disabled(character.key, guild_id) or (
            edge is not None and self.packs.is_disabled(edge.node.key, guild_id)
        ):
            raise NonFatalError("Found no character with that id.")

        card = await self.store.get_character(guild_id, character.key)
        if card is None:
            raise NonFatalError(f"**{alias_to_array(character.name)[0]}** hasn't been found by anyone yet.")
        if card.user_id == user_id:
            raise NonFatalError("You can't steal from yourself!")

        victim = await self.store.get_inventory(guild_id, card.user_id)
        inactive_days = get_inactive_days(victim)
        if card.id in victim.party and inactive_days < INACTIVE_PARTY_DAYS:
            raise NonFatalError(
                f"As part of <@{card.user_id}>'s party, **{alias_to_array(character.name)[0]}** "
                f"cannot be stolen while <@{card.user_id}> is still active"
            )

        return StealPlan(
            character=character,
            card=card,
            victim=victim,
            chance=get_chances(card.rating, inactive_days),
        )

    async def attempt(self, guild_id: str, user_id: str, character_id: str, pre_chance: int) -> StealOutcome:
        """Roll against the chance shown to the user; both outcomes start the cooldown."""
        plan = await self.pre(guild_id, user_id, character_id)
        if plan.chance < pre_chance:
            raise NonFatalError(
                f"Something happened and affected your chances of stealing **{plan.name}**, Please try again!"
            )

        cooldown_until = utc_now() + timedelta(hours=STEAL_COOLDOWN_HOURS)
        success = get_random_float() * 100 <= plan.chance

        if not success:
            await self.store.set_steal_cooldown(guild_id, user_id, cooldown_until)
            logger.info("User %s failed to steal %s (%s%%)", user_id, plan.card.id, plan.chance)
            return StealOutcome(plan=plan, success=False, cooldown_until=cooldown_until)

        try:
            await self.store.steal_character(
                guild_id,
                user_id,
                plan.card.id,
                cooldown_until=cooldown_until,
                allow_party=get_inactive_days(plan.victim) >= INACTIVE_PARTY_DAYS,
            )
        except StoreError as exc:
            if exc.code in {"CHARACTER_NOT_FOUND", "CHARACTER_OWNED", "CHARACTER_IN_PARTY"}:
                raise NonFatalError(
                    f"Something happened and affected your chances of stealing **{plan.name}**, Please try again!"
                ) from exc
            raise

        logger.info(
            "User %s stole %s from %s in guild %s (%s%%)",
            user_id,
            plan.card.id,
            plan.card.user_id,
            guild_id,
            plan.chance,
        )
        return StealOutcome(plan=plan, success=True, cooldown_until=cooldown_until)


__all__ = [
    "BASE_CHANCES",
    "INACTIVE_PARTY_DAYS",
    "STEAL_COOLDOWN_HOURS",
    "Steal",
    "StealOutcome",
    "StealPlan",
    "get_chances",
    "get_inactive_days",
    "get_random_float",
]
