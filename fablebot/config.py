"""Runtime configuration loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .utils import flag_from_env, path_from_env

DEFAULT_ANILIST_URL = "https://graphql.anilist.co"


@dataclass(frozen=True)
class FableConfig:
    token: Optional[str]
    command_prefix: str
    db_path: Path
    pool_path: Path
    packs_dir: Path
    anilist_url: str
    log_level: str
    gacha: bool = True
    trading: bool = True
    stealing: bool = True
    synthesis: bool = True
    community_packs: bool = True

    @classmethod
    def from_env(cls, base_dir: Optional[Path] = None) -> "FableConfig":
        """Build the config from ``FABLE_*`` variables; call ``load_dotenv()`` first."""
        base = base_dir or Path.cwd()

        def _resolve(name: str, default: str) -> Path:
            path = path_from_env(name) or Path(default)
            if not path.is_absolute():
                path = base / path
            return path

        return cls(
            token=os.getenv("FABLE_DISCORD_TOKEN") or None,
            command_prefix=os.getenv("FABLE_COMMAND_PREFIX", "!"),
            db_path=_resolve("FABLE_DB_PATH", "fable.sqlite3"),
            pool_path=_resolve("FABLE_POOL_PATH", "packs/anilist/pool.json"),
            packs_dir=_resolve("FABLE_PACKS_DIR", "packs"),
            anilist_url=os.getenv("FABLE_ANILIST_URL", DEFAULT_ANILIST_URL),
            log_level=os.getenv("FABLE_LOG_LEVEL", "INFO"),
            gacha=flag_from_env("FABLE_GACHA"),
            trading=flag_from_env("FABLE_TRADING"),
            stealing=flag_from_env("FABLE_STEALING"),
            synthesis=flag_from_env("FABLE_SYNTHESIS"),
            community_packs=flag_from_env("FABLE_COMMUNITY_PACKS"),
        )


__all__ = ["DEFAULT_ANILIST_URL", "FableConfig"]
