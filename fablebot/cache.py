"""Process-wide cache of each guild's installed packs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from .models import Pack

logger = logging.getLogger("fablebot.cache")


@dataclass(frozen=True)
class GuildPacks:
    packs: Tuple[Pack, ...]
    disables: frozenset

    @classmethod
    def from_packs(cls, packs: Sequence[Pack]) -> "GuildPacks":
        disables = set()
        for pack in packs:
            disables.update(pack.manifest.conflicts)
        return cls(packs=tuple(packs), disables=frozenset(disables))


class GuildPackCache:
    """TTL-less cache; entries live until ``invalidate`` is called for the guild."""

    def __init__(self, max_guilds: int = 1000) -> None:
        self._entries: Dict[str, GuildPacks] = {}
        self._max_guilds = max_guilds

    def get(self, guild_id: str) -> Optional[GuildPacks]:
        return self._entries.get(guild_id)

    def set(self, guild_id: str, packs: Sequence[Pack]) -> GuildPacks:
        if guild_id not in self._entries and len(self._entries) >= self._max_guilds:
            # Drop the oldest guild; dicts keep insertion order.
            oldest = next(iter(self._entries))
            self._entries.pop(oldest, None)
            logger.debug("Evicted pack cache for guild %s", oldest)
        entry = GuildPacks.from_packs(packs)
        self._entries[guild_id] = entry
        return entry

    def invalidate(self, guild_id: str) -> None:
        if self._entries.pop(guild_id, None) is not None:
            logger.debug("Invalidated pack cache for guild %s", guild_id)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, guild_id: object) -> bool:
        return guild_id in self._entries


__all__ = ["GuildPackCache", "GuildPacks"]
