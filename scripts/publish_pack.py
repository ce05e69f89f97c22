#!/usr/bin/env python3
"""Publish (or update) a community pack manifest so guilds can install it."""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from fablebot.anilist import AniListClient
from fablebot.config import FableConfig
from fablebot.errors import NonFatalError
from fablebot.packs import PackRegistry
from fablebot.store import InventoryStore


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Store a pack manifest in the FableBot database.")
    parser.add_argument("manifest", type=Path, help="Path to the pack's manifest.yaml or manifest.json.")
    parser.add_argument(
        "--owner",
        default=None,
        help="Discord user id of the pack owner (required to install private packs).",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the sqlite database (defaults to FABLE_DB_PATH or fable.sqlite3).",
    )
    return parser.parse_args()


async def publish(config: FableConfig, manifest: Path, owner: Optional[str]) -> str:
    store = InventoryStore(config.db_path)
    anilist = AniListClient(config.anilist_url)
    try:
        registry = PackRegistry(store, anilist, packs_dir=config.packs_dir)
        pack = await registry.publish(manifest, owner)
    finally:
        await anilist.aclose()
        store.close()
    return f"Published `{pack.id}` ({len(pack.manifest.characters)} characters, {len(pack.manifest.media)} media)."


def main() -> int:
    load_dotenv()
    args = parse_args()
    config = FableConfig.from_env()
    if args.db is not None:
        config = replace(config, db_path=args.db)

    manifest = args.manifest if args.manifest.is_absolute() else (Path.cwd() / args.manifest).resolve()
    if not manifest.exists():
        print(f"[ERROR] Manifest {manifest} not found.", file=sys.stderr)
        return 1

    try:
        print(asyncio.run(publish(config, manifest, args.owner)))
    except (ValueError, yaml.YAMLError, NonFatalError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
