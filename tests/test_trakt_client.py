"""Tests for the Trakt API client helpers."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, cast

import httpx
import pytest

from showsync.config import Settings
from showsync.models import PendingAction
from showsync.services.trakt import TraktAuthState, TraktClient, TraktError


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {
        "TRAKT_CLIENT_ID": "client-id",
        "TRAKT_ACCESS_TOKEN": "access-token",
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def _season_payload() -> dict[str, Any]:
    return {
        "number": 1,
        "ids": {"trakt": 3950, "tvdb": 364731, "tmdb": 3624},
        "rating": 8.9,
        "votes": 1200,
        "episode_count": 10,
        "aired_episodes": 10,
        "title": "Season 1",
        "overview": "The first season.",
        "network": "HBO",
        "episodes": [
            {
                "season": 1,
                "number": 1,
                "title": "Winter Is Coming",
                "ids": {"trakt": 73640, "tmdb": 63056},
                "overview": "Ned Stark is torn.",
                "rating": 8.1,
                "votes": 500,
                "first_aired": "2011-04-18T01:00:00.000Z",
            }
        ],
    }


def test_auth_state_requires_client_and_token() -> None:
    http_client = cast(httpx.AsyncClient, object())
    assert TraktClient(build_settings(), http_client).auth_state() is TraktAuthState.LOGGED_IN
    assert (
        TraktClient(build_settings(TRAKT_ACCESS_TOKEN=""), http_client).auth_state()
        is TraktAuthState.LOGGED_OUT
    )


@pytest.mark.anyio("asyncio")
async def test_get_seasons_episodes_maps_payload() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=[_season_payload()])

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        results = await client.get_seasons_episodes(1390)

    assert requests[0].url.path == "/shows/1390/seasons"
    assert requests[0].url.params["extended"] == "full,episodes"
    assert requests[0].headers["trakt-api-key"] == "client-id"
    assert requests[0].headers["authorization"] == "Bearer access-token"

    season, episodes = results[0]
    assert season.trakt_id == 3950
    assert season.tmdb_id == 3624
    assert season.episodes_aired == 10
    assert season.trakt_rating_votes == 1200
    assert season.network == "HBO"
    assert season.tmdb_poster_path is None

    episode = episodes[0]
    assert episode.trakt_id == 73640
    assert episode.season_number == 1
    assert episode.summary == "Ned Stark is torn."
    assert episode.first_aired == datetime(2011, 4, 18, 1, 0)


@pytest.mark.anyio("asyncio")
async def test_get_episode_returns_none_when_missing() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        assert await client.get_episode(1390, 1, 99) is None


@pytest.mark.anyio("asyncio")
async def test_fetch_retries_server_errors_then_raises() -> None:
    attempts = 0

    def handler(_: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(503, text="unavailable")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(TRAKT_MAX_RETRIES=1), http_client)
        with pytest.raises(TraktError) as excinfo:
            await client.get_seasons_episodes(1390)

    assert attempts == 2
    assert excinfo.value.status_code == 503


@pytest.mark.anyio("asyncio")
async def test_fetch_recovers_after_transient_error() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, json=[])

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(TRAKT_MAX_RETRIES=1), http_client)
        assert await client.get_seasons_episodes(1390) == []

    assert attempts == 2


@pytest.mark.anyio("asyncio")
async def test_get_show_episode_watches_paginates() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        page = int(request.url.params["page"])
        items = [
            {
                "id": page * 10 + index,
                "watched_at": "2024-01-01T10:00:00.000Z",
                "action": "watch",
                "type": "episode",
                "episode": {
                    "season": 1,
                    "number": page * 2 + index,
                    "title": "Episode",
                    "ids": {"trakt": page * 100 + index},
                },
            }
            for index in range(2 if page == 1 else 1)
        ]
        return httpx.Response(200, json=items, headers={"x-pagination-page-count": "2"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(TRAKT_HISTORY_PAGE_SIZE=2), http_client)
        watches = await client.get_show_episode_watches(1390)

    assert [request.url.params["page"] for request in requests] == ["1", "2"]
    assert requests[0].url.path == "/sync/history/shows/1390"
    assert [entry.trakt_id for _, entry in watches] == [10, 11, 20]
    episode, entry = watches[0]
    assert episode.trakt_id == 100
    assert episode.season_number == 1
    assert entry.watched_at == datetime(2024, 1, 1, 10, 0)
    assert entry.pending_action is PendingAction.NOTHING
    assert entry.episode_id is None


@pytest.mark.anyio("asyncio")
async def test_add_and_remove_history_payloads() -> None:
    bodies: list[tuple[str, dict[str, Any]]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.url.path, json.loads(request.content)))
        if request.url.path.endswith("/remove"):
            return httpx.Response(200, json={"deleted": {"episodes": 1}, "not_found": {"ids": [7]}})
        return httpx.Response(201, json={"added": {"episodes": 1}, "not_found": {"episodes": []}})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        await client.add_episode_watches([(73640, datetime(2024, 1, 2, 3, 4, 5))])
        result = await client.remove_history_entries([6, 7])

    assert bodies[0] == (
        "/sync/history",
        {"episodes": [{"ids": {"trakt": 73640}, "watched_at": "2024-01-02T03:04:05.000Z"}]},
    )
    assert bodies[1] == ("/sync/history/remove", {"ids": [6, 7]})
    assert result["not_found"] == {"ids": [7]}


@pytest.mark.anyio("asyncio")
async def test_push_rejection_raises() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="unauthorized")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        with pytest.raises(TraktError) as excinfo:
            await client.remove_history_entries([1])

    assert excinfo.value.status_code == 401
