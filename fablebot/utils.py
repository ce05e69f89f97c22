"""Utility helpers for FableBot."""

from __future__ import annotations

import difflib
import math
import os
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Generic, Iterable, List, Mapping, MutableSequence, Optional, TypeVar

import discord

from .errors import ConfigurationError

T = TypeVar("T")

_truthy = {"1", "true", "yes", "on"}


def flag_from_env(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _truthy


def path_from_env(name: str) -> Optional[Path]:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return Path(value).expanduser()


def is_admin(member: discord.abc.User) -> bool:
    if isinstance(member, discord.Member):
        if member.guild_permissions.administrator:
            return True
        roles: Iterable[discord.Role] = getattr(member, "roles", [])
        return any(role.name.lower() == "admin" for role in roles)
    return False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_int(query: Optional[str]) -> Optional[int]:
    """Return ``query`` as an int only when it is an exact integer literal."""
    if query is None:
        return None
    try:
        value = int(query)
    except ValueError:
        return None
    if str(value) != query:
        return None
    return value


def distance(a: str, b: str) -> float:
    """Similarity of two names as a 0-100 percentage, ignoring case."""
    return 100 * difflib.SequenceMatcher(None, a.lower(), b.lower()).ratio()


def diff_in_days(a: datetime, b: datetime) -> int:
    return int(abs((a - b).total_seconds()) // 86400)


def diff_in_minutes(a: datetime, b: datetime) -> int:
    return int(abs((a - b).total_seconds()) // 60)


def discord_timestamp(value: datetime) -> str:
    # Discord timestamps are in seconds.
    return str(math.floor(value.timestamp()))


def shuffle(items: MutableSequence[T]) -> None:
    """Uniform in-place Fisher-Yates shuffle driven by ``random.random``."""
    for i in range(len(items)):
        swap = math.floor(random.random() * (i + 1))
        items[swap], items[i] = items[i], items[swap]


@dataclass(frozen=True)
class RngResult(Generic[T]):
    value: T
    chance: int


def validate_table(table: Mapping[int, object]) -> None:
    chances = [int(chance) for chance in table]
    total = sum(chances)
    if total != 100:
        raise ConfigurationError(f"Sum of {chances} is {total} when it should be 100")


def rng(table: Mapping[int, T]) -> RngResult[T]:
    """Pick one value from a ``{chance: value}`` table whose chances sum to 100.

    Every key's index is repeated ``chance`` times, the expanded list is
    shuffled and its first element wins. Weights are exact at 1% granularity.
    """
    validate_table(table)

    chances: List[int] = [int(chance) for chance in table]
    pool: List[T] = list(table.values())

    expanded: List[int] = []
    for index, chance in enumerate(chances):
        expanded.extend([index] * chance)

    shuffle(expanded)

    winner = expanded[0]
    return RngResult(value=pool[winner], chance=chances[winner])


__all__ = [
    "RngResult",
    "diff_in_days",
    "diff_in_minutes",
    "discord_timestamp",
    "distance",
    "flag_from_env",
    "is_admin",
    "parse_int",
    "path_from_env",
    "rng",
    "shuffle",
    "utc_now",
    "validate_table",
]
