import copy
import json
import unittest

import httpx

from fablebot.anilist import AniListClient, transform_character
from fablebot.errors import CatalogError, CatalogRateLimitError
from fablebot.models import CharacterRole
from fablebot.rating import Rating

CHARACTER = {
    "id": 1,
    "name": {"full": "Full Name", "native": "native", "alternative": ["alias"]},
    "description": "description",
    "image": {"large": "https://example.com/image.png"},
    "media": {
        "edges": [
            {
                "characterRole": "MAIN",
                "node": {
                    "id": 10,
                    "type": "ANIME",
                    "format": "TV",
                    "popularity": 60000,
                    "isAdult": False,
                    "title": {"english": "Title", "romaji": "Romaji", "native": None},
                    "synonyms": [],
                    "coverImage": {"large": None},
                },
            }
        ]
    },
}


def _client(handler) -> AniListClient:
    transport = httpx.MockTransport(handler)
    return AniListClient("https://graphql.test", client=httpx.AsyncClient(transport=transport), retry_delay=0)


class AniListClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_characters_are_transformed(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"Page": {"characters": [CHARACTER]}}})

        characters = await _client(handler).characters([1])

        self.assertEqual(requests[0]["variables"], {"ids": [1]})
        character = characters[0]
        self.assertEqual(character.key, "anilist:1")
        self.assertEqual(character.name.english, "Full Name")
        self.assertIsNone(character.popularity)
        edge = character.first_edge
        self.assertIs(edge.role, CharacterRole.MAIN)
        self.assertEqual(edge.node.key, "anilist:10")
        self.assertEqual(edge.node.popularity, 60000)

    async def test_search_characters(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"Page": {"characters": [CHARACTER]}}})

        characters = await _client(handler).search_characters("full name")

        self.assertEqual(requests[0]["variables"], {"search": "full name"})
        self.assertIn("search: $search", requests[0]["query"])
        self.assertEqual([character.key for character in characters], ["anilist:1"])

    async def test_empty_ids_skip_the_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        self.assertEqual(await _client(handler).characters([]), [])

    async def test_rate_limit(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429)

        with self.assertRaises(CatalogRateLimitError):
            await _client(handler).media([1])

    async def test_rate_limit_in_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "Too Many Requests."}]})

        with self.assertRaises(CatalogRateLimitError):
            await _client(handler).media([1])

    async def test_server_errors_are_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(500)
            return httpx.Response(200, json={"data": {"Page": {"media": [CHARACTER["media"]["edges"][0]["node"]]}}})

        media = await _client(handler).media([10])

        self.assertEqual(len(calls), 3)
        self.assertEqual(media[0].title.english, "Title")

    async def test_client_errors_are_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        with self.assertRaises(CatalogError):
            await _client(handler).media([10])
        self.assertEqual(len(calls), 1)

    async def test_media_pages(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            payload = {
                "data": {
                    "Page": {
                        "pageInfo": {"hasNextPage": True},
                        "media": [
                            {
                                "id": 10,
                                "characters": {"pageInfo": {"hasNextPage": False}, "nodes": [CHARACTER]},
                            }
                        ],
                    }
                }
            }
            return httpx.Response(200, json=payload)

        page = await _client(handler).media_by_popularity(50000, None, 1)

        self.assertTrue(page.has_next_page)
        self.assertEqual(page.items[0].media_id, "10")
        self.assertFalse(page.items[0].characters.has_next_page)
        self.assertEqual(page.items[0].characters.items[0].key, "anilist:1")


class TransformTests(unittest.TestCase):
    def test_null_role_keeps_the_edge(self) -> None:
        payload = copy.deepcopy(CHARACTER)
        payload["media"]["edges"][0]["characterRole"] = None

        character = transform_character(payload)

        edge = character.first_edge
        self.assertIsNone(edge.role)
        self.assertEqual(edge.node.key, "anilist:10")
        # Rated on popularity alone; a MAIN role would add a star.
        self.assertEqual(Rating.from_character(character).stars, 2)

    def test_unknown_role_is_dropped(self) -> None:
        payload = copy.deepcopy(CHARACTER)
        payload["media"]["edges"][0]["characterRole"] = "CAMEO"
        self.assertIsNone(transform_character(payload).first_edge.role)


if __name__ == "__main__":
    unittest.main()
