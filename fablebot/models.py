"""Dataclasses and shared type definitions for FableBot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple


class CharacterRole(str, Enum):
    MAIN = "MAIN"
    SUPPORTING = "SUPPORTING"
    BACKGROUND = "BACKGROUND"


class MediaType(str, Enum):
    ANIME = "ANIME"
    MANGA = "MANGA"
    OTHER = "OTHER"


class MediaFormat(str, Enum):
    TV = "TV"
    TV_SHORT = "TV_SHORT"
    MOVIE = "MOVIE"
    SPECIAL = "SPECIAL"
    OVA = "OVA"
    ONA = "ONA"
    MUSIC = "MUSIC"
    MANGA = "MANGA"
    NOVEL = "NOVEL"
    ONE_SHOT = "ONE_SHOT"
    VIDEO_GAME = "VIDEO_GAME"
    INTERNET = "INTERNET"


@dataclass(frozen=True)
class Alias:
    english: Optional[str] = None
    romaji: Optional[str] = None
    native: Optional[str] = None
    alternative: Tuple[str, ...] = ()

    def to_list(self) -> List[str]:
        """Unique, non-empty names in display priority order."""
        names: List[str] = []
        for name in (self.english, self.romaji, self.native, *self.alternative):
            if name and name not in names:
                names.append(name)
        return names

    @property
    def primary(self) -> str:
        names = self.to_list()
        return names[0] if names else ""

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, object]]) -> "Alias":
        payload = payload or {}
        english = payload.get("english") or payload.get("full")
        alternative = payload.get("alternative") or ()
        return cls(
            english=str(english) if english else None,
            romaji=str(payload["romaji"]) if payload.get("romaji") else None,
            native=str(payload["native"]) if payload.get("native") else None,
            alternative=tuple(str(item) for item in alternative if item),
        )


@dataclass(frozen=True)
class Media:
    id: str
    pack_id: str
    title: Alias
    type: MediaType = MediaType.ANIME
    format: Optional[MediaFormat] = None
    popularity: Optional[int] = None
    is_adult: bool = False
    images: Tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.pack_id}:{self.id}"

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], pack_id: str) -> "Media":
        raw_format = payload.get("format")
        raw_popularity = payload.get("popularity")
        return cls(
            id=str(payload["id"]),
            pack_id=str(payload.get("packId") or pack_id),
            title=Alias.from_dict(payload.get("title")),  # type: ignore[arg-type]
            type=MediaType(payload.get("type") or MediaType.ANIME.value),
            format=MediaFormat(raw_format) if raw_format else None,
            popularity=int(raw_popularity) if raw_popularity is not None else None,
            is_adult=bool(payload.get("isAdult", False)),
            images=_image_urls(payload.get("images")),
        )


@dataclass(frozen=True)
class MediaEdge:
    role: Optional[CharacterRole]
    node: Media


@dataclass(frozen=True)
class MediaLink:
    """Unresolved ``role -> media id`` link as written in pack manifests."""

    role: CharacterRole
    media_id: str


@dataclass(frozen=True)
class Character:
    """A fully resolved character; every media edge carries its media node."""

    id: str
    pack_id: str
    name: Alias
    description: Optional[str] = None
    popularity: Optional[int] = None
    images: Tuple[str, ...] = ()
    media: Tuple[MediaEdge, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.pack_id}:{self.id}"

    @property
    def first_edge(self) -> Optional[MediaEdge]:
        return self.media[0] if self.media else None


@dataclass(frozen=True)
class CharacterRef:
    """A pack character whose media are referenced by id; resolve with ``PackRegistry.aggregate``."""

    id: str
    pack_id: str
    name: Alias
    description: Optional[str] = None
    popularity: Optional[int] = None
    images: Tuple[str, ...] = ()
    media: Tuple[MediaLink, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.pack_id}:{self.id}"

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], pack_id: str) -> "CharacterRef":
        links = []
        for link in payload.get("media") or ():  # type: ignore[union-attr]
            links.append(MediaLink(role=CharacterRole(link["role"]), media_id=str(link["mediaId"])))
        raw_popularity = payload.get("popularity")
        return cls(
            id=str(payload["id"]),
            pack_id=str(payload.get("packId") or pack_id),
            name=Alias.from_dict(payload.get("name")),  # type: ignore[arg-type]
            description=payload.get("description"),  # type: ignore[arg-type]
            popularity=int(raw_popularity) if raw_popularity is not None else None,
            images=_image_urls(payload.get("images")),
            media=tuple(links),
        )


@dataclass(frozen=True)
class Manifest:
    id: str
    title: str = ""
    author: str = ""
    description: str = ""
    private: bool = False
    conflicts: Tuple[str, ...] = ()
    media: Tuple[Media, ...] = ()
    characters: Tuple[CharacterRef, ...] = ()

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Manifest":
        pack_id = str(payload["id"])
        media_section = payload.get("media") or {}
        character_section = payload.get("characters") or {}
        return cls(
            id=pack_id,
            title=str(payload.get("title") or pack_id),
            author=str(payload.get("author") or ""),
            description=str(payload.get("description") or ""),
            private=bool(payload.get("private", False)),
            conflicts=tuple(str(item) for item in payload.get("conflicts") or ()),  # type: ignore[union-attr]
            media=tuple(
                Media.from_dict(item, pack_id) for item in media_section.get("new") or ()  # type: ignore[union-attr]
            ),
            characters=tuple(
                CharacterRef.from_dict(item, pack_id)
                for item in character_section.get("new") or ()  # type: ignore[union-attr]
            ),
        )


@dataclass(frozen=True)
class Pack:
    manifest: Manifest
    owner_id: Optional[str] = None

    @property
    def id(self) -> str:
        return self.manifest.id


@dataclass(frozen=True)
class PoolEntry:
    id: str
    media_id: str
    rating: int

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "mediaId": self.media_id, "rating": self.rating}

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "PoolEntry":
        return cls(id=str(payload["id"]), media_id=str(payload.get("mediaId", "")), rating=int(payload["rating"]))


@dataclass(frozen=True)
class Like:
    character_id: Optional[str] = None
    media_id: Optional[str] = None


@dataclass
class User:
    id: str
    guarantees: List[int] = field(default_factory=list)
    likes: List[Like] = field(default_factory=list)
    version: int = 0


@dataclass
class Inventory:
    id: int
    guild_id: str
    user_id: str
    available_pulls: int
    recharge_timestamp: Optional[datetime] = None
    last_pull: Optional[datetime] = None
    steal_timestamp: Optional[datetime] = None
    party: Tuple[Optional[str], ...] = (None, None, None, None, None)
    version: int = 0


@dataclass(frozen=True)
class InventoryCharacter:
    id: str
    media_id: str
    rating: int
    user_id: str
    guild_id: str
    inventory_id: int
    created_at: datetime
    nickname: Optional[str] = None
    image: Optional[str] = None


@dataclass
class Pull:
    character: Character
    media: Media
    rating: int
    pool: int
    role: Optional[CharacterRole] = None
    role_chance: Optional[int] = None
    popularity_chance: Optional[int] = None
    popularity_greater: Optional[int] = None
    popularity_lesser: Optional[float] = None
    remaining: Optional[int] = None
    guarantees: Optional[List[int]] = None
    likes: Optional[List[str]] = None


def _image_urls(raw: object) -> Tuple[str, ...]:
    urls: List[str] = []
    if isinstance(raw, Sequence) and not isinstance(raw, str):
        for item in raw:
            if isinstance(item, Mapping) and item.get("url"):
                urls.append(str(item["url"]))
            elif isinstance(item, str) and item:
                urls.append(item)
    return tuple(urls)


__all__ = [
    "Alias",
    "Character",
    "CharacterRef",
    "CharacterRole",
    "Inventory",
    "InventoryCharacter",
    "Like",
    "Manifest",
    "Media",
    "MediaEdge",
    "MediaFormat",
    "MediaLink",
    "MediaType",
    "Pack",
    "PoolEntry",
    "Pull",
    "User",
]
