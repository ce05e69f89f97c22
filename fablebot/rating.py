"""Star ratings for characters."""

from __future__ import annotations

from typing import Optional, Union

from .models import Character, CharacterRef, CharacterRole

STAR_EMOTE = "<:star:1061016362832642098>"
NO_STAR_EMOTE = "<:no_star:1061016360190222466>"

MIN_STARS = 1
MAX_STARS = 5

# Upper (exclusive) popularity bound of each role-independent tier.
POPULARITY_TIERS = (
    (50_000, 1),
    (200_000, 2),
    (400_000, 3),
    (1_000_000, 4),
)


def _clamp(stars: int) -> int:
    return max(MIN_STARS, min(MAX_STARS, stars))


def popularity_tier(popularity: Optional[int]) -> int:
    if not popularity:
        return MIN_STARS
    for ceiling, stars in POPULARITY_TIERS:
        if popularity < ceiling:
            return stars
    return MAX_STARS


class Rating:
    """A 1-5 star rating, either fixed or derived from ``(role, popularity)``.

    Main characters sit one tier above the popularity bracket once they leave
    the bottom tier; background characters are always one star.
    """

    __slots__ = ("_stars",)

    def __init__(
        self,
        *,
        stars: Optional[int] = None,
        role: Optional[Union[CharacterRole, str]] = None,
        popularity: Optional[int] = None,
    ) -> None:
        if stars is not None:
            self._stars = _clamp(int(stars))
            return

        if role is not None:
            role = CharacterRole(role)

        tier = popularity_tier(popularity)

        if role is CharacterRole.BACKGROUND:
            self._stars = MIN_STARS
        elif role is CharacterRole.MAIN and tier > MIN_STARS:
            self._stars = _clamp(tier + 1)
        else:
            self._stars = tier

    @classmethod
    def from_character(cls, character: Union[Character, CharacterRef]) -> "Rating":
        if isinstance(character, CharacterRef):
            raise TypeError("aggregate the character before rating it")
        edge = character.first_edge
        if edge is None:
            return cls(popularity=character.popularity)
        return cls(role=edge.role, popularity=character.popularity or edge.node.popularity)

    @property
    def stars(self) -> int:
        return self._stars

    @property
    def emotes(self) -> str:
        return STAR_EMOTE * self._stars + NO_STAR_EMOTE * (MAX_STARS - self._stars)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Rating):
            return self._stars == other._stars
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._stars)

    def __repr__(self) -> str:
        return f"Rating(stars={self._stars})"


__all__ = ["MAX_STARS", "MIN_STARS", "NO_STAR_EMOTE", "Rating", "STAR_EMOTE", "popularity_tier"]
