"""Pack registry: builtin and community packs, catalog lookups and gacha pools."""

from __future__ import annotations

import json
import logging
import math
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import yaml

from .anilist import PACK_ID as ANILIST_PACK_ID
from .anilist import AniListClient
from .cache import GuildPackCache
from .errors import NonFatalError, StoreError
from .models import Alias, Character, CharacterRef, CharacterRole, Manifest, Media, MediaEdge, Pack, PoolEntry
from .rating import Rating
from .store import InventoryStore
from .utils import distance, parse_int, shuffle

logger = logging.getLogger("fablebot.packs")

PopularityRange = Tuple[int, float]
PoolFile = Dict[str, Dict[str, List[PoolEntry]]]

_ID_PATTERN = re.compile(r"^([-_a-z0-9]+):([-_a-z0-9]+)$")
_BARE_ID_PATTERN = re.compile(r"^([-_a-z0-9]+)$")

# Minimum name similarity (0-100) for a search hit.
SEARCH_THRESHOLD = 65

ANILIST_MANIFEST = Manifest(id=ANILIST_PACK_ID, title="AniList", author="AniList")


def range_key(range_: Sequence[float]) -> str:
    """Key of a popularity bracket in ``pool.json``; an unbounded top is written as ``null``."""
    low, high = range_[0], range_[1]
    bound = None if high is None or (isinstance(high, float) and math.isnan(high)) else int(high)
    return json.dumps([int(low), bound], separators=(",", ":"))


def in_range(popularity: Optional[int], range_: Sequence[float]) -> bool:
    if popularity is None:
        return False
    low, high = range_[0], range_[1]
    if popularity < low:
        return False
    return high is None or math.isnan(high) or popularity <= high


def parse_id(literal: str, default_pack_id: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """Split ``pack:id``; a bare id resolves against ``default_pack_id`` when given."""
    match = _ID_PATTERN.match(literal)
    if match:
        return match.group(1), match.group(2)
    if default_pack_id and _BARE_ID_PATTERN.match(literal):
        return default_pack_id, literal
    return None, None


def alias_to_array(alias: Alias, max_length: Optional[int] = None) -> List[str]:
    names: List[str] = []
    for name in alias.to_list():
        if max_length and len(name) > max_length:
            name = name[: max_length - 3].rstrip() + "..."
        if name not in names:
            names.append(name)
    return names


def load_manifest(path: Path) -> Tuple[Manifest, Dict[str, Any]]:
    """Read a YAML or JSON pack manifest; returns the parsed model and the raw payload."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        payload = json.loads(text)
    else:
        payload = yaml.safe_load(text)
    if not isinstance(payload, dict) or "id" not in payload:
        raise ValueError(f"{path} is not a pack manifest (missing 'id')")
    if not _BARE_ID_PATTERN.match(str(payload["id"])):
        raise ValueError(f"{path} has an invalid pack id {payload['id']!r}")
    return Manifest.from_dict(payload), payload


def read_pool(path: Path) -> PoolFile:
    if not path.exists():
        logger.warning("Pool cache %s does not exist; AniList pools will be empty", path)
        return {}
    with path.open("r", encoding="utf-8") as handle:
        raw = json.load(handle)
    pool: PoolFile = {}
    for key, roles in raw.items():
        pool[key] = {role: [PoolEntry.from_dict(entry) for entry in entries] for role, entries in roles.items()}
    return pool


class PackRegistry:
    """Resolves ids across the AniList catalog and the packs installed in each guild."""

    def __init__(
        self,
        store: InventoryStore,
        anilist: AniListClient,
        *,
        cache: Optional[GuildPackCache] = None,
        packs_dir: Optional[Path] = None,
        pool_path: Optional[Path] = None,
        community_packs: bool = True,
        builtins: Optional[Sequence[Manifest]] = None,
        pool: Optional[PoolFile] = None,
    ) -> None:
        self.store = store
        self.anilist = anilist
        self.cache = cache or GuildPackCache()
        self.community_packs = community_packs
        self._pool_path = pool_path
        self._pool = pool

        if builtins is None:
            builtins = [ANILIST_MANIFEST]
            vtubers = self._find_builtin(packs_dir, "vtubers")
            if vtubers is not None:
                builtins.append(load_manifest(vtubers)[0])
        self.builtins: Tuple[Pack, ...] = tuple(Pack(manifest=manifest) for manifest in builtins)
        self._builtin_disables = frozenset(
            conflict for pack in self.builtins for conflict in pack.manifest.conflicts
        )

    @staticmethod
    def _find_builtin(packs_dir: Optional[Path], name: str) -> Optional[Path]:
        if packs_dir is None:
            return None
        for suffix in (".yaml", ".yml", ".json"):
            candidate = packs_dir / name / f"manifest{suffix}"
            if candidate.exists():
                return candidate
        logger.warning("Builtin pack %s has no manifest under %s", name, packs_dir)
        return None

    # Installed packs ----------------------------------------------------

    async def all(self, guild_id: Optional[str] = None, *, community_only: bool = False) -> List[Pack]:
        """Builtins followed by the guild's installed packs (cached until install/uninstall)."""
        if not guild_id or not self.community_packs:
            return [] if community_only else list(self.builtins)

        entry = self.cache.get(guild_id)
        if entry is None:
            entry = self.cache.set(guild_id, await self.store.get_guild_packs(guild_id))
            logger.debug("Cached %s packs for guild %s", len(entry.packs), guild_id)

        if community_only:
            return list(entry.packs)
        return [*self.builtins, *entry.packs]

    def is_disabled(self, id_: str, guild_id: str) -> bool:
        if id_ in self._builtin_disables:
            return True
        entry = self.cache.get(guild_id)
        return entry is not None and id_ in entry.disables

    async def publish(self, path: Path, owner_id: Optional[str] = None) -> Pack:
        manifest, payload = load_manifest(path)
        if manifest.id in {pack.id for pack in self.builtins}:
            raise NonFatalError(f"`{manifest.id}` is a builtin pack id.")
        pack = await self.store.publish_pack(manifest, payload, owner_id)
        logger.info("Published pack %s (%s characters) from %s", manifest.id, len(manifest.characters), path)
        return pack

    async def install(self, guild_id: str, pack_id: str, user_id: str) -> Pack:
        self._require_community_packs()
        try:
            pack = await self.store.install_pack(guild_id, pack_id, user_id)
        except StoreError as exc:
            if exc.code == "PACK_PRIVATE":
                raise NonFatalError("This pack is private and can only be installed by its owner.") from exc
            if exc.code == "PACK_NOT_FOUND":
                raise NonFatalError("Found no pack with that id.") from exc
            raise
        self.cache.invalidate(guild_id)
        logger.info("Installed pack %s in guild %s (by %s)", pack_id, guild_id, user_id)
        return pack

    async def uninstall(self, guild_id: str, pack_id: str) -> Pack:
        self._require_community_packs()
        try:
            pack = await self.store.uninstall_pack(guild_id, pack_id)
        except StoreError as exc:
            if exc.code in {"PACK_NOT_FOUND", "PACK_NOT_INSTALLED"}:
                raise NonFatalError("Found no installed pack with that id.") from exc
            raise
        self.cache.invalidate(guild_id)
        logger.info("Uninstalled pack %s from guild %s", pack_id, guild_id)
        return pack

    def _require_community_packs(self) -> None:
        if not self.community_packs:
            raise NonFatalError("Community packs are under maintenance, try again later.")

    # Lookups ------------------------------------------------------------

    async def _find_by_id(
        self,
        kind: str,
        ids: Sequence[str],
        guild_id: str,
        default_pack_id: Optional[str] = None,
    ) -> Dict[str, Union[Character, CharacterRef, Media]]:
        results: Dict[str, Union[Character, CharacterRef, Media]] = {}
        anilist_ids: List[int] = []
        packs = await self.all(guild_id)

        for literal in dict.fromkeys(ids):
            pack_id, id_ = parse_id(literal, default_pack_id)
            if not pack_id or not id_:
                continue
            if pack_id == ANILIST_PACK_ID:
                number = parse_int(id_)
                if number is not None:
                    anilist_ids.append(number)
                continue
            pack = next((pack for pack in packs if pack.id == pack_id), None)
            if pack is None:
                continue
            entries = pack.manifest.characters if kind == "characters" else pack.manifest.media
            match = next((entry for entry in entries if entry.id == id_), None)
            if match is not None:
                results[literal] = match

        if anilist_ids:
            fetched: Sequence[Union[Character, Media]]
            if kind == "characters":
                fetched = await self.anilist.characters(anilist_ids)
            else:
                fetched = await self.anilist.media(anilist_ids)
            by_id = {item.id: item for item in fetched}
            for number in anilist_ids:
                item = by_id.get(str(number))
                if item is not None:
                    results[f"{ANILIST_PACK_ID}:{number}"] = item

        return results

    async def search_many(
        self,
        kind: str,
        search: str,
        guild_id: str,
        *,
        threshold: float = SEARCH_THRESHOLD,
    ) -> List[Union[Character, CharacterRef, Media]]:
        """Match ``search`` against AniList results and every installed pack by name.

        Hits are ordered by name similarity, then by popularity.
        """
        candidates: List[Union[Character, CharacterRef, Media]] = []
        if kind == "characters":
            candidates.extend(await self.anilist.search_characters(search))
        else:
            candidates.extend(await self.anilist.search_media(search))
        for pack in await self.all(guild_id):
            candidates.extend(pack.manifest.characters if kind == "characters" else pack.manifest.media)

        scored = []
        for item in candidates:
            names = alias_to_array(item.title if isinstance(item, Media) else item.name)
            if not names:
                continue
            score = max(distance(search, name) for name in names)
            if score < threshold:
                continue
            scored.append((score, item.popularity or 0, item))

        # Stable, so equal hits keep AniList's own relevance order.
        scored.sort(key=lambda hit: (hit[0], hit[1]), reverse=True)
        logger.debug("Search %r (%s) matched %s of %s candidates", search, kind, len(scored), len(candidates))
        return [item for _, _, item in scored]

    async def search_one(
        self,
        kind: str,
        search: str,
        guild_id: str,
    ) -> Optional[Union[Character, CharacterRef, Media]]:
        hits = await self.search_many(kind, search, guild_id)
        return hits[0] if hits else None

    async def characters(
        self,
        ids: Sequence[str],
        guild_id: str,
        *,
        search: Optional[str] = None,
    ) -> List[Union[Character, CharacterRef]]:
        """Look characters up by ``pack:id``; without ids, return the best name match for ``search``."""
        if ids:
            found = await self._find_by_id("characters", ids, guild_id)
            return list(found.values())  # type: ignore[arg-type]
        if search:
            match = await self.search_one("characters", search, guild_id)
            return [match] if match is not None else []  # type: ignore[list-item]
        return []

    async def media(self, ids: Sequence[str], guild_id: str, *, search: Optional[str] = None) -> List[Media]:
        if ids:
            found = await self._find_by_id("media", ids, guild_id)
            return list(found.values())  # type: ignore[arg-type]
        if search:
            match = await self.search_one("media", search, guild_id)
            return [match] if match is not None else []  # type: ignore[list-item]
        return []

    async def aggregate(self, character: Union[Character, CharacterRef], guild_id: str) -> Character:
        """Resolve a pack character's ``role -> media id`` links into media nodes."""
        if isinstance(character, Character):
            return character

        media_ids = [link.media_id for link in character.media]
        nodes = await self._find_by_id("media", media_ids, guild_id, default_pack_id=character.pack_id)
        edges = []
        for link in character.media:
            node = nodes.get(link.media_id)
            if isinstance(node, Media):
                edges.append(MediaEdge(role=link.role, node=node))

        return Character(
            id=character.id,
            pack_id=character.pack_id,
            name=character.name,
            description=character.description,
            popularity=character.popularity,
            images=character.images,
            media=tuple(edges),
        )

    # Pools --------------------------------------------------------------

    def read_pool(self) -> PoolFile:
        if self._pool is None:
            self._pool = read_pool(self._pool_path) if self._pool_path else {}
        return self._pool

    def reload_pool(self) -> None:
        self._pool = None

    async def pool(
        self,
        guild_id: str,
        *,
        range_: Optional[PopularityRange] = None,
        role: Optional[CharacterRole] = None,
        stars: Optional[int] = None,
    ) -> List[PoolEntry]:
        """Candidate cards for a pull, at most one per media, in random order."""
        cached = self.read_pool()
        entries: List[PoolEntry] = []

        if stars is not None:
            for bracket in cached.values():
                entries.extend(bracket.get("ALL", ()))
        elif range_ is not None:
            bracket = cached.get(range_key(range_), {})
            entries.extend(bracket.get(role.value if role else "ALL", ()))

        for pack in await self.all(guild_id):
            for ref in pack.manifest.characters:
                character = await self.aggregate(ref, guild_id)
                edge = character.first_edge
                if edge is None or edge.node.is_adult or not edge.node.popularity:
                    continue
                entries.append(
                    PoolEntry(
                        id=f"{pack.id}:{character.id}",
                        media_id=edge.node.key,
                        rating=Rating.from_character(character).stars,
                    )
                )

        # Shuffle first so the surviving card of each media is random.
        shuffle(entries)

        seen = set()
        pool: List[PoolEntry] = []
        for entry in entries:
            if stars is not None and entry.rating != stars:
                continue
            if entry.media_id in seen:
                continue
            seen.add(entry.media_id)
            pool.append(entry)
        return pool


__all__ = [
    "ANILIST_MANIFEST",
    "PackRegistry",
    "SEARCH_THRESHOLD",
    "alias_to_array",
    "in_range",
    "load_manifest",
    "parse_id",
    "range_key",
    "read_pool",
]
