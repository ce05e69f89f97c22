"""Exception types raised by the gacha engine and its collaborators."""

from __future__ import annotations

from typing import Optional


class FableError(Exception):
    """Base class for every error raised inside FableBot."""


class NonFatalError(FableError):
    """Raised when a request fails in a way the user can fix; the message is shown as-is."""


class InsufficientSacrificesError(NonFatalError):
    """Raised when a merge target cannot be reached with the available cards."""

    def __init__(self, available: int, target: int):
        super().__init__(
            f"Only **{available}** out of **5** {target - 1}★ possibilities are available "
            f"to merge into a {target}★ character."
        )
        self.available = available
        self.target = target


class MergeNotPossibleError(NonFatalError):
    """Raised when no tier can be reached at all in min/max mode."""

    def __init__(self) -> None:
        super().__init__("You don't have enough characters to merge.")


class PoolError(FableError):
    """Raised when the sampled variables left no valid candidate."""

    def __init__(self) -> None:
        super().__init__(
            "failed to pull a character due to the pool not containing any characters "
            "that match the randomly chosen variables"
        )


class NoPullsError(FableError):
    """Raised when a user has no pulls left; carries the unix timestamp of the next recharge."""

    def __init__(self, recharge_timestamp: str):
        super().__init__("NO_PULLS_AVAILABLE")
        self.recharge_timestamp = recharge_timestamp


class NoGuaranteesError(NonFatalError):
    def __init__(self, stars: int):
        super().__init__(f"You don't have any {stars}★ pulls.")
        self.stars = stars


class ConfigurationError(FableError):
    """Raised for programmer/data errors such as weight tables not summing to 100."""


class StoreError(FableError):
    """Raised by the inventory store when a mutation is rejected."""

    def __init__(self, code: str, *, detail: Optional[object] = None):
        super().__init__(code)
        self.code = code
        self.detail = detail


class ConcurrencyExhaustedError(StoreError):
    """Raised when the optimistic-concurrency retry budget runs out."""

    def __init__(self, what: str = "inventory"):
        super().__init__(f"failed to update {what}")


class CatalogError(FableError):
    """Raised when the AniList catalog cannot be reached or returns an error payload."""


class CatalogRateLimitError(CatalogError):
    def __init__(self) -> None:
        super().__init__("Too Many Requests")


__all__ = [
    "CatalogError",
    "CatalogRateLimitError",
    "ConcurrencyExhaustedError",
    "ConfigurationError",
    "FableError",
    "InsufficientSacrificesError",
    "MergeNotPossibleError",
    "NoGuaranteesError",
    "NoPullsError",
    "NonFatalError",
    "PoolError",
    "StoreError",
]
