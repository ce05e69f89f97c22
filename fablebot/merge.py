"""Synthesis: merge five lower-rated cards into one pull of the next rating."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import InsufficientSacrificesError, MergeNotPossibleError, NonFatalError, PoolError
from .gacha import Gacha
from .models import Character, InventoryCharacter, Pull
from .packs import PackRegistry
from .store import InventoryStore

logger = logging.getLogger("fablebot.merge")

MODES = ("target", "min", "max")
SACRIFICES_PER_MERGE = 5
HIGHLIGHTS = 5


def _chunks(items: Sequence[List[InventoryCharacter]], size: int) -> List[List[InventoryCharacter]]:
    return [[card for group in items[i : i + size] for card in group] for i in range(0, len(items), size)]


def get_sacrifices(
    characters: Sequence[InventoryCharacter],
    mode: str,
    target: Optional[int] = None,
) -> Tuple[List[InventoryCharacter], int]:
    """Pick the cards to sacrifice for a merge and the rating they merge into.

    Every tier's possibilities are the previous tier's possibilities grouped by
    five, followed by the tier's own cards. ``min`` and ``max`` choose the
    lowest or highest tier that has a full group of five.
    """
    if mode not in MODES:
        raise ValueError(f"unknown merge mode {mode!r}")

    split: Dict[int, List[InventoryCharacter]] = {tier: [] for tier in range(1, 6)}
    for card in sorted(characters, key=lambda card: card.rating):
        # Five-star cards can only be spent towards another five-star.
        split[4 if card.rating == 5 else card.rating].append(card)

    possibilities: Dict[int, List[List[InventoryCharacter]]] = {tier: [] for tier in range(1, 6)}
    for tier in range(1, 6):
        if target and possibilities.get(target):
            break
        if tier > 1:
            previous = possibilities[tier - 1]
            possibilities[tier].extend(_chunks(previous, SACRIFICES_PER_MERGE)[: len(previous) // SACRIFICES_PER_MERGE])
        possibilities[tier].extend([card] for card in split[tier])

    def reachable(tier: int) -> bool:
        return any(len(group) >= SACRIFICES_PER_MERGE for group in possibilities[tier])

    if mode == "min":
        target = next((tier for tier in (2, 3, 4, 5) if reachable(tier)), None)
    elif mode == "max":
        target = next((tier for tier in (5, 4, 3, 2) if reachable(tier)), None)

    if not target or target not in possibilities:
        raise MergeNotPossibleError()

    for group in possibilities[target]:
        if len(group) >= SACRIFICES_PER_MERGE:
            return group, target

    raise InsufficientSacrificesError(available=len(possibilities.get(target - 1, ())), target=target)


@dataclass
class SynthesisPreview:
    target: int
    sacrifices: List[InventoryCharacter]
    highlights: List[Tuple[Character, InventoryCharacter]] = field(default_factory=list)

    @property
    def others(self) -> int:
        return len(self.sacrifices) - len(self.highlights)


class Synthesis:
    def __init__(self, gacha: Gacha, packs: PackRegistry, store: InventoryStore, *, enabled: bool = True) -> None:
        self.gacha = gacha
        self.packs = packs
        self.store = store
        self.enabled = enabled

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise NonFatalError("Merging is under maintenance, try again later.")

    async def get_filtered_characters(self, guild_id: str, user_id: str) -> List[InventoryCharacter]:
        """Owned cards that are neither party members nor liked."""
        user = await self.store.get_user(user_id)
        inventory = await self.store.get_inventory(guild_id, user_id)
        characters = await self.store.get_user_characters(inventory)

        party = {member for member in inventory.party if member}
        liked = {like.character_id or like.media_id for like in user.likes}
        return [card for card in characters if card.id not in party and card.id not in liked]

    async def synthesize(
        self,
        guild_id: str,
        user_id: str,
        mode: str = "target",
        target: Optional[int] = None,
    ) -> SynthesisPreview:
        self._require_enabled()
        characters = await self.get_filtered_characters(guild_id, user_id)
        sacrifices, target = get_sacrifices(characters, mode, target)
        sacrifices = sorted(sacrifices, key=lambda card: card.rating, reverse=True)

        preview = SynthesisPreview(target=target, sacrifices=sacrifices)
        top = sacrifices[:HIGHLIGHTS]
        resolved = {item.key: item for item in await self.packs.characters([card.id for card in top], guild_id)}
        for card in top:
            found = resolved.get(card.id)
            if found is None:
                continue
            character = await self.packs.aggregate(found, guild_id)
            edge = character.first_edge
            if (
                self.packs.is_disabled(character.key, guild_id)
                or self.packs.is_disabled(card.media_id, guild_id)
                or (edge is not None and self.packs.is_disabled(edge.node.key, guild_id))
            ):
                continue
            preview.highlights.append((character, card))
        return preview

    async def confirmed(self, guild_id: str, user_id: str, target: int) -> Pull:
        """Recompute the sacrifices for ``target`` and spend them on a guaranteed pull."""
        self._require_enabled()
        characters = await self.get_filtered_characters(guild_id, user_id)
        sacrifices, _ = get_sacrifices(characters, "target", target)
        try:
            pull = await self.gacha.rng_pull(
                guild_id,
                user_id,
                guarantee=target,
                sacrifices=[card.id for card in sacrifices],
            )
        except PoolError as exc:
            raise NonFatalError(f"There are no more {target}★ characters left.") from exc
        logger.info(
            "User %s merged %s cards into %s (%s★) in guild %s",
            user_id,
            len(sacrifices),
            pull.character.key,
            target,
            guild_id,
        )
        return pull


__all__ = ["SynthesisPreview", "Synthesis", "get_sacrifices"]
