"""Tests for the TMDB episode client."""

from __future__ import annotations

from datetime import datetime
from typing import cast

import httpx
import pytest

from showsync.config import Settings
from showsync.services.tmdb import TMDBClient, TMDBError


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _settings() -> Settings:
    return Settings(_env_file=None, TMDB_API_KEY="tmdb-key")  # type: ignore[call-arg]


def test_client_requires_api_key() -> None:
    with pytest.raises(ValueError, match="TMDB API key is required"):
        TMDBClient(Settings(_env_file=None), cast(httpx.AsyncClient, object()))


@pytest.mark.anyio("asyncio")
async def test_get_episode_maps_payload() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "id": 63056,
                "name": "Winter Is Coming",
                "overview": "",
                "episode_number": 1,
                "season_number": 1,
                "air_date": "2011-04-17",
                "still_path": "/9hGF3WUkBf7cSjMg0cdMDHJkByd.jpg",
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com") as http_client:
        episode = await TMDBClient(_settings(), http_client).get_episode(1399, 1, 1)

    assert requests[0].url.path == "/tv/1399/season/1/episode/1"
    assert requests[0].url.params["api_key"] == "tmdb-key"
    assert episode.tmdb_id == 63056
    assert episode.title == "Winter Is Coming"
    assert episode.summary is None
    assert episode.first_aired == datetime(2011, 4, 17)
    assert episode.tmdb_backdrop_path == "/9hGF3WUkBf7cSjMg0cdMDHJkByd.jpg"
    assert episode.trakt_id is None


@pytest.mark.anyio("asyncio")
async def test_get_episode_not_found_is_none() -> None:
    transport = httpx.MockTransport(lambda _: httpx.Response(404, json={"status_code": 34}))
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com") as http_client:
        assert await TMDBClient(_settings(), http_client).get_episode(1399, 9, 9) is None


@pytest.mark.anyio("asyncio")
async def test_get_episode_server_error_raises() -> None:
    transport = httpx.MockTransport(lambda _: httpx.Response(500, text="oops"))
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com") as http_client:
        with pytest.raises(TMDBError):
            await TMDBClient(_settings(), http_client).get_episode(1399, 1, 1)
