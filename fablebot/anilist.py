"""Async AniList GraphQL client."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, TypeVar

import httpx

from .config import DEFAULT_ANILIST_URL
from .errors import CatalogError, CatalogRateLimitError
from .models import Alias, Character, CharacterRole, Media, MediaEdge, MediaFormat, MediaType

logger = logging.getLogger("fablebot.anilist")

T = TypeVar("T")

PACK_ID = "anilist"
REQUEST_ATTEMPTS = 3
RETRY_DELAY = 0.5
REQUEST_TIMEOUT = 10.0
SEARCH_PAGE_SIZE = 25

_MEDIA_FIELDS = """
    id
    type
    format
    popularity
    isAdult
    title { english romaji native }
    synonyms
    coverImage { large }
"""

_CHARACTER_FIELDS = f"""
    id
    name {{ full native alternative }}
    description
    image {{ large }}
    media(sort: POPULARITY_DESC) {{
        edges {{
            characterRole
            node {{ {_MEDIA_FIELDS} }}
        }}
    }}
"""

CHARACTERS_QUERY = f"""
query ($ids: [Int]) {{
    Page {{
        characters(id_in: $ids) {{ {_CHARACTER_FIELDS} }}
    }}
}}
"""

MEDIA_QUERY = f"""
query ($ids: [Int]) {{
    Page {{
        media(id_in: $ids) {{ {_MEDIA_FIELDS} }}
    }}
}}
"""

SEARCH_CHARACTERS_QUERY = f"""
query ($search: String!) {{
    Page(perPage: {SEARCH_PAGE_SIZE}) {{
        characters(search: $search, sort: SEARCH_MATCH) {{ {_CHARACTER_FIELDS} }}
    }}
}}
"""

SEARCH_MEDIA_QUERY = f"""
query ($search: String!) {{
    Page(perPage: {SEARCH_PAGE_SIZE}) {{
        media(search: $search, sort: SEARCH_MATCH, isAdult: false) {{ {_MEDIA_FIELDS} }}
    }}
}}
"""

MEDIA_BY_POPULARITY_QUERY = f"""
query ($page: Int!, $popularity_greater: Int!, $popularity_lesser: Int) {{
    Page(page: $page, perPage: 50) {{
        pageInfo {{ hasNextPage }}
        media(
            popularity_lesser: $popularity_lesser,
            popularity_greater: $popularity_greater,
            format_not_in: [NOVEL, MUSIC, SPECIAL],
            isAdult: false,
        ) {{
            id
            characters(page: 1, perPage: 25) {{
                pageInfo {{ hasNextPage }}
                nodes {{ {_CHARACTER_FIELDS} }}
            }}
        }}
    }}
}}
"""

MEDIA_CHARACTERS_QUERY = f"""
query ($id: Int!, $page: Int!) {{
    Media(id: $id) {{
        characters(page: $page, perPage: 25) {{
            pageInfo {{ hasNextPage }}
            nodes {{ {_CHARACTER_FIELDS} }}
        }}
    }}
}}
"""


@dataclass
class Page(Generic[T]):
    items: List[T]
    has_next_page: bool


@dataclass
class MediaCharacters:
    """A media and the first page of its characters."""

    media_id: str
    characters: Page[Character]


def transform_media(item: Mapping[str, Any]) -> Media:
    title = item.get("title") or {}
    raw_format = item.get("format")
    try:
        media_format: Optional[MediaFormat] = MediaFormat(raw_format) if raw_format else None
    except ValueError:
        media_format = None
    try:
        media_type = MediaType(item.get("type") or MediaType.ANIME.value)
    except ValueError:
        media_type = MediaType.OTHER
    cover = (item.get("coverImage") or {}).get("large")
    return Media(
        id=str(item["id"]),
        pack_id=PACK_ID,
        title=Alias(
            english=title.get("english"),
            romaji=title.get("romaji"),
            native=title.get("native"),
            alternative=tuple(item.get("synonyms") or ()),
        ),
        type=media_type,
        format=media_format,
        popularity=item.get("popularity"),
        is_adult=bool(item.get("isAdult", False)),
        images=(cover,) if cover else (),
    )


def _character_role(raw: Optional[str]) -> Optional[CharacterRole]:
    # AniList leaves the role null on some edges; those rate on popularity alone.
    try:
        return CharacterRole(raw) if raw else None
    except ValueError:
        return None


def transform_character(item: Mapping[str, Any]) -> Character:
    name = item.get("name") or {}
    image = (item.get("image") or {}).get("large")
    edges = []
    for edge in (item.get("media") or {}).get("edges") or ():
        if not edge.get("node"):
            continue
        edges.append(MediaEdge(role=_character_role(edge.get("characterRole")), node=transform_media(edge["node"])))
    return Character(
        id=str(item["id"]),
        pack_id=PACK_ID,
        name=Alias(
            english=name.get("full"),
            native=name.get("native"),
            alternative=tuple(name.get("alternative") or ()),
        ),
        description=item.get("description"),
        # AniList has no character popularity; ratings fall back to the media's.
        popularity=None,
        images=(image,) if image else (),
        media=tuple(edges),
    )


def _character_page(payload: Mapping[str, Any]) -> Page[Character]:
    return Page(
        items=[transform_character(node) for node in payload.get("nodes") or ()],
        has_next_page=bool((payload.get("pageInfo") or {}).get("hasNextPage")),
    )


class AniListClient:
    """Thin wrapper over ``httpx.AsyncClient`` that speaks AniList's GraphQL API."""

    def __init__(
        self,
        url: str = DEFAULT_ANILIST_URL,
        *,
        client: Optional[httpx.AsyncClient] = None,
        retry_delay: float = RETRY_DELAY,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        self._owns_client = client is None
        self._retry_delay = retry_delay

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(self, query: str, variables: Mapping[str, Any]) -> Dict[str, Any]:
        """POST a GraphQL query and return its ``data`` object.

        Transport failures and 5xx responses are retried; a 429 is raised
        straight away as :class:`CatalogRateLimitError`.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, REQUEST_ATTEMPTS + 1):
            try:
                response = await self._client.post(
                    self._url,
                    json={"query": query, "variables": dict(variables)},
                    headers={"Accept": "application/json"},
                )
                if response.status_code == 429:
                    raise CatalogRateLimitError()
                response.raise_for_status()
            except CatalogRateLimitError:
                logger.warning("AniList rate limited the request (429)")
                raise
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                last_error = exc
                if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code < 500:
                    break
                logger.debug("AniList request failed (attempt %s/%s): %s", attempt, REQUEST_ATTEMPTS, exc)
                if attempt < REQUEST_ATTEMPTS:
                    await asyncio.sleep(self._retry_delay)
                continue

            body = response.json()
            if body.get("errors"):
                messages = "; ".join(str(error.get("message")) for error in body["errors"])
                if "Too Many Requests" in messages:
                    raise CatalogRateLimitError()
                raise CatalogError(messages)
            return body.get("data") or {}

        raise CatalogError(f"AniList request failed: {last_error}") from last_error

    async def characters(self, ids: Sequence[int]) -> List[Character]:
        if not ids:
            return []
        data = await self.request(CHARACTERS_QUERY, {"ids": list(ids)})
        return [transform_character(item) for item in (data.get("Page") or {}).get("characters") or ()]

    async def media(self, ids: Sequence[int]) -> List[Media]:
        if not ids:
            return []
        data = await self.request(MEDIA_QUERY, {"ids": list(ids)})
        return [transform_media(item) for item in (data.get("Page") or {}).get("media") or ()]

    async def search_characters(self, search: str) -> List[Character]:
        data = await self.request(SEARCH_CHARACTERS_QUERY, {"search": search})
        return [transform_character(item) for item in (data.get("Page") or {}).get("characters") or ()]

    async def search_media(self, search: str) -> List[Media]:
        data = await self.request(SEARCH_MEDIA_QUERY, {"search": search})
        return [transform_media(item) for item in (data.get("Page") or {}).get("media") or ()]

    async def media_by_popularity(
        self,
        popularity_greater: int,
        popularity_lesser: Optional[int],
        page: int,
    ) -> Page[MediaCharacters]:
        variables: Dict[str, Any] = {"page": page, "popularity_greater": popularity_greater}
        if popularity_lesser:
            variables["popularity_lesser"] = popularity_lesser
        data = await self.request(MEDIA_BY_POPULARITY_QUERY, variables)
        payload = data.get("Page") or {}
        return Page(
            items=[
                MediaCharacters(media_id=str(item["id"]), characters=_character_page(item.get("characters") or {}))
                for item in payload.get("media") or ()
            ],
            has_next_page=bool((payload.get("pageInfo") or {}).get("hasNextPage")),
        )

    async def media_characters(self, media_id: int, page: int) -> Page[Character]:
        data = await self.request(MEDIA_CHARACTERS_QUERY, {"id": media_id, "page": page})
        return _character_page(((data.get("Media") or {}).get("characters")) or {})


__all__ = [
    "AniListClient",
    "MediaCharacters",
    "PACK_ID",
    "Page",
    "transform_character",
    "transform_media",
]
