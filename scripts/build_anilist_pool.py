#!/usr/bin/env python
"""Rebuild packs/anilist/pool.json from AniList, one popularity bracket at a time."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from dotenv import load_dotenv

from fablebot.anilist import AniListClient, Page
from fablebot.config import FableConfig
from fablebot.errors import CatalogRateLimitError
from fablebot.gacha import VARIABLES
from fablebot.models import Character, CharacterRole, PoolEntry
from fablebot.packs import in_range, range_key
from fablebot.rating import Rating

logger = logging.getLogger("build_anilist_pool")

RATE_LIMIT_SLEEP = 60
BUCKETS = ("ALL", *(role.value for role in CharacterRole))


def parse_args() -> argparse.Namespace:
    load_dotenv()
    config = FableConfig.from_env()
    parser = argparse.ArgumentParser(
        description="Query AniList for every gacha popularity bracket and write the pool cache.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=config.pool_path,
        help=f"Where to write the pool cache (default: {config.pool_path}).",
    )
    parser.add_argument(
        "--url",
        default=config.anilist_url,
        help="AniList GraphQL endpoint.",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=0,
        help="Stop each bracket after this many media pages (0 means no limit).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Increase logging verbosity.",
    )
    return parser.parse_args()


def collect(
    characters: Iterable[Character],
    range_,
    buckets: Dict[str, List[PoolEntry]],
) -> None:
    """Add every non-adult character whose first media sits inside ``range_``."""
    for character in characters:
        edge = character.first_edge
        if edge is None or edge.node.is_adult:
            continue
        if not in_range(edge.node.popularity, range_):
            continue
        entry = PoolEntry(
            id=character.key,
            media_id=edge.node.key,
            rating=Rating(role=edge.role, popularity=edge.node.popularity).stars,
        )
        buckets["ALL"].append(entry)
        if edge.role is not None:
            buckets[edge.role.value].append(entry)


async def _with_rate_limit(fetch):
    while True:
        try:
            return await fetch()
        except CatalogRateLimitError:
            logger.info("Rate limited; sleeping for %s seconds...", RATE_LIMIT_SLEEP)
            await asyncio.sleep(RATE_LIMIT_SLEEP)


async def build_bracket(client: AniListClient, range_, max_pages: int) -> Dict[str, List[PoolEntry]]:
    low, high = range_
    lesser: Optional[int] = None if math.isnan(high) else int(high)
    buckets: Dict[str, List[PoolEntry]] = {bucket: [] for bucket in BUCKETS}
    key = range_key(range_)
    logger.info("%s: starting", key)

    page = 1
    while True:
        media_page = await _with_rate_limit(lambda: client.media_by_popularity(int(low), lesser, page))
        before = {bucket: len(entries) for bucket, entries in buckets.items()}

        for media in media_page.items:
            characters: Page[Character] = media.characters
            characters_page = 1
            while True:
                collect(characters.items, range_, buckets)
                if not characters.has_next_page:
                    break
                characters_page += 1
                characters = await _with_rate_limit(
                    lambda: client.media_characters(int(media.media_id), characters_page)
                )

        logger.info(
            "%s: page %s had %s characters: MAIN: %s | SUPPORTING: %s | BACKGROUND: %s",
            key,
            page,
            len(buckets["ALL"]) - before["ALL"],
            len(buckets["MAIN"]) - before["MAIN"],
            len(buckets["SUPPORTING"]) - before["SUPPORTING"],
            len(buckets["BACKGROUND"]) - before["BACKGROUND"],
        )

        if not media_page.has_next_page or (max_pages and page >= max_pages):
            break
        page += 1

    logger.info("%s: finished", key)
    return buckets


async def build_pool(url: str, max_pages: int) -> Dict[str, Dict[str, List[PoolEntry]]]:
    client = AniListClient(url)
    pool: Dict[str, Dict[str, List[PoolEntry]]] = {}
    try:
        for range_ in VARIABLES.ranges.values():
            buckets = await build_bracket(client, range_, max_pages)
            if buckets["ALL"]:
                pool[range_key(range_)] = buckets
    finally:
        await client.aclose()
    return pool


def write_pool(pool: Dict[str, Dict[str, List[PoolEntry]]], output: Path) -> int:
    output.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        key: {bucket: [entry.to_dict() for entry in entries] for bucket, entries in buckets.items()}
        for key, buckets in pool.items()
    }
    with output.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle)
    return sum(len(buckets["ALL"]) for buckets in pool.values())


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")
    pool = asyncio.run(build_pool(args.url, args.max_pages))
    total = write_pool(pool, args.output)
    logger.info("%s characters", total)
    logger.info("Written cache to %s", args.output)


if __name__ == "__main__":
    main()
