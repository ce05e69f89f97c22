"""Pull resolution: sample variables, build a pool, validate a candidate, commit it."""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from .errors import NoGuaranteesError, NoPullsError, PoolError, StoreError
from .models import Character, CharacterRole, Media, PoolEntry, Pull
from .packs import PackRegistry, PopularityRange, in_range
from .rating import MAX_STARS, MIN_STARS, POPULARITY_TIERS, Rating
from .store import InventoryStore, recharge_timestamp
from .utils import RngResult, rng, validate_table

rolls_logger = logging.getLogger("fablebot.gacha.rolls")

LOWEST_POPULARITY = 1000
MAX_SAMPLE_ATTEMPTS = 3
MAX_VALIDATION_ATTEMPTS = 25


@dataclass(frozen=True)
class Variables:
    ranges: Mapping[int, PopularityRange]
    roles: Mapping[int, CharacterRole]


VARIABLES = Variables(
    ranges={
        65: (LOWEST_POPULARITY, 50_000),
        22: (50_000, 100_000),
        9: (100_000, 200_000),
        3: (200_000, 400_000),
        1: (400_000, math.nan),
    },
    roles={
        10: CharacterRole.MAIN,
        70: CharacterRole.SUPPORTING,
        20: CharacterRole.BACKGROUND,
    },
)

validate_table(VARIABLES.ranges)
validate_table(VARIABLES.roles)


def guaranteed_range(stars: int) -> PopularityRange:
    """Popularity bracket that rates a supporting character at ``stars``."""
    stars = max(MIN_STARS, min(MAX_STARS, stars))
    floor = 0
    for ceiling, tier in POPULARITY_TIERS:
        if tier == stars:
            return floor, ceiling
        floor = ceiling
    return floor, math.nan


@dataclass
class _Sample:
    pool: List[PoolEntry]
    range: Optional[RngResult[PopularityRange]] = None
    role: Optional[RngResult[CharacterRole]] = None


class Gacha:
    """Resolves pulls for a guild against its pack registry and inventory store."""

    def __init__(self, packs: PackRegistry, store: InventoryStore) -> None:
        self.packs = packs
        self.store = store

    async def _sample(self, guild_id: str, guarantee: Optional[int]) -> _Sample:
        for attempt in range(1, MAX_SAMPLE_ATTEMPTS + 1):
            if guarantee is not None:
                sample = _Sample(pool=await self.packs.pool(guild_id, stars=guarantee))
            else:
                range_ = rng(VARIABLES.ranges)
                # The lowest bracket only holds one-star cards, so a role adds nothing there.
                role = rng(VARIABLES.roles) if range_.value[0] > LOWEST_POPULARITY else None
                sample = _Sample(
                    pool=await self.packs.pool(
                        guild_id,
                        range_=range_.value,
                        role=role.value if role else None,
                    ),
                    range=range_,
                    role=role,
                )
            rolls_logger.debug(
                "Sampled guild=%s range=%s role=%s guarantee=%s -> %s candidates (attempt %s/%s)",
                guild_id,
                sample.range.value if sample.range else None,
                sample.role.value.value if sample.role else None,
                guarantee,
                len(sample.pool),
                attempt,
                MAX_SAMPLE_ATTEMPTS,
            )
            if sample.pool:
                return sample
        raise PoolError()

    def _accepts(
        self,
        guild_id: str,
        character: Character,
        sample: _Sample,
        guarantee: Optional[int],
    ) -> Optional[Tuple[Media, Rating]]:
        edge = character.first_edge
        if edge is None:
            return None
        media = edge.node
        if self.packs.is_disabled(character.key, guild_id) or self.packs.is_disabled(media.key, guild_id):
            return None
        if media.is_adult or not media.popularity:
            return None
        popularity = character.popularity or media.popularity
        if sample.range is not None and not in_range(popularity, sample.range.value):
            return None
        if sample.role is not None and edge.role != sample.role.value:
            return None
        rating = Rating(role=edge.role, popularity=popularity)
        if guarantee is not None and rating.stars != guarantee:
            return None
        return media, rating

    async def _validate(
        self,
        guild_id: str,
        sample: _Sample,
        guarantee: Optional[int],
    ) -> Tuple[Character, Media, Rating]:
        candidates = list(sample.pool)
        for _ in range(min(MAX_VALIDATION_ATTEMPTS, len(candidates))):
            entry = candidates.pop(math.floor(random.random() * len(candidates)))
            found = await self.packs.characters([entry.id], guild_id)
            if not found:
                rolls_logger.debug("Candidate %s no longer exists", entry.id)
                continue
            character = await self.packs.aggregate(found[0], guild_id)
            accepted = self._accepts(guild_id, character, sample, guarantee)
            if accepted is None:
                rolls_logger.debug("Candidate %s rejected by validation", entry.id)
                continue
            media, rating = accepted
            return character, media, rating
        raise PoolError()

    async def rng_pull(
        self,
        guild_id: str,
        user_id: Optional[str] = None,
        guarantee: Optional[int] = None,
        sacrifices: Optional[Sequence[str]] = None,
    ) -> Pull:
        """Resolve one pull; with ``user_id`` the card is also added to the user's inventory."""
        sample = await self._sample(guild_id, guarantee)
        character, media, rating = await self._validate(guild_id, sample, guarantee)

        if sample.range is not None:
            bracket: Optional[PopularityRange] = sample.range.value
        elif guarantee is not None:
            bracket = guaranteed_range(guarantee)
        else:
            bracket = None

        pull = Pull(
            character=character,
            media=media,
            rating=rating.stars,
            pool=len(sample.pool),
            role=sample.role.value if sample.role else None,
            role_chance=sample.role.chance if sample.role else None,
            popularity_chance=sample.range.chance if sample.range else None,
            popularity_greater=bracket[0] if bracket else None,
            popularity_lesser=bracket[1] if bracket else None,
        )

        if user_id is None:
            return pull

        try:
            result = await self.store.add_character(
                guild_id,
                user_id,
                character_id=character.key,
                media_id=media.key,
                rating=rating.stars,
                guaranteed=guarantee if not sacrifices else None,
                sacrifices=sacrifices or (),
            )
        except StoreError as exc:
            if exc.code == "NO_PULLS_AVAILABLE":
                raise NoPullsError(recharge_timestamp(exc.detail)) from exc  # type: ignore[arg-type]
            if exc.code == "NO_GUARANTEES" and guarantee is not None:
                raise NoGuaranteesError(guarantee) from exc
            raise

        pull.remaining = result.inventory.available_pulls
        pull.guarantees = result.guarantees
        pull.likes = [liker for liker in result.likes if liker != user_id]

        rolls_logger.debug(
            "Committed %s (%s★) for user=%s guild=%s out of %s candidates",
            character.key,
            rating.stars,
            user_id,
            guild_id,
            len(sample.pool),
        )
        return pull


__all__ = [
    "Gacha",
    "LOWEST_POPULARITY",
    "MAX_SAMPLE_ATTEMPTS",
    "MAX_VALIDATION_ATTEMPTS",
    "VARIABLES",
    "Variables",
    "guaranteed_range",
]
