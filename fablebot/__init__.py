"""FableBot package: the gacha engine, its stores and the Discord commands on top."""

from . import commands, errors, gacha, merge, models, packs, rating, store, utils  # noqa: F401

__all__ = ["commands", "errors", "gacha", "merge", "models", "packs", "rating", "store", "utils"]
