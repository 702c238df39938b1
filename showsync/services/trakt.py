"""Utilities for communicating with the Trakt API."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

import httpx

from ..config import Settings
from ..models import Episode, EpisodeWatchEntry, PendingAction, Season

logger = logging.getLogger(__name__)


class TraktError(RuntimeError):
    """Raised when Trakt cannot serve or accept a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TraktAuthState(str, Enum):
    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"


class TraktClient:
    """Thin wrapper around the Trakt HTTP API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.trakt_max_retries

    def auth_state(self) -> TraktAuthState:
        """Report whether requests will be made on behalf of a user."""

        if self._settings.trakt_client_id and self._settings.trakt_access_token:
            return TraktAuthState.LOGGED_IN
        return TraktAuthState.LOGGED_OUT

    def _headers(self) -> dict[str, str]:
        headers = {
            "trakt-api-version": "2",
            "Content-Type": "application/json",
            "User-Agent": f"{self._settings.app_name} (showsync)",
        }
        if self._settings.trakt_client_id:
            headers["trakt-api-key"] = self._settings.trakt_client_id
        if self._settings.trakt_access_token:
            headers["Authorization"] = f"Bearer {self._settings.trakt_access_token}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Send a request, retrying transport errors and 5xx responses.

        Returns ``None`` for a 404 when ``allow_not_found`` is set; any other
        failure raises :class:`TraktError` once retries are exhausted.
        """

        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method, url, headers=self._headers(), params=params, json=json
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to Trakt (%s). Retrying %s %s in %.1fs",
                        exc.__class__.__name__,
                        method,
                        url,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("Trakt request %s %s failed: %s", method, url, exc)
                raise TraktError(f"Trakt request {method} {url} failed: {exc}") from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Trakt %s for %s %s. Retrying in %.1fs",
                        response.status_code,
                        method,
                        url,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Trakt request %s %s failed with %s: %s",
                method,
                url,
                response.status_code,
                response.text,
            )
            raise TraktError(response.text or f"HTTP {response.status_code}", response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response, expected: type) -> Any:
        try:
            data = response.json()
        except ValueError as exc:
            raise TraktError("Unexpected non-JSON Trakt response") from exc
        if not isinstance(data, expected):
            raise TraktError("Unexpected Trakt response structure")
        return data

    async def get_seasons_episodes(
        self, trakt_show_id: int
    ) -> list[tuple[Season, list[Episode]]]:
        """Fetch every season of a show together with its episodes."""

        response = await self._request(
            "GET",
            f"/shows/{trakt_show_id}/seasons",
            params={"extended": "full,episodes"},
        )
        data = self._json(response, list)
        results: list[tuple[Season, list[Episode]]] = []
        for payload in data:
            if not isinstance(payload, dict):
                continue
            season = self.map_season(payload)
            episodes = [
                self.map_episode(item, season_number=season.number)
                for item in payload.get("episodes") or []
                if isinstance(item, dict)
            ]
            results.append((season, episodes))
        return results

    async def get_episode(
        self, trakt_show_id: int, season_number: int, episode_number: int
    ) -> Episode | None:
        response = await self._request(
            "GET",
            f"/shows/{trakt_show_id}/seasons/{season_number}/episodes/{episode_number}",
            params={"extended": "full"},
            allow_not_found=True,
        )
        if response is None:
            return None
        return self.map_episode(self._json(response, dict), season_number=season_number)

    async def get_show_episode_watches(
        self, trakt_show_id: int
    ) -> list[tuple[Episode, EpisodeWatchEntry]]:
        """Fetch the complete episode watch history of a show."""

        url = f"/sync/history/shows/{trakt_show_id}"
        page_size = self._settings.trakt_history_page_size
        collected: list[tuple[Episode, EpisodeWatchEntry]] = []
        page = 1

        while True:
            response = await self._request(
                "GET", url, params={"page": page, "limit": page_size}
            )
            data = self._json(response, list)
            for item in data:
                if not isinstance(item, dict) or not isinstance(item.get("episode"), dict):
                    continue
                collected.append(
                    (self.map_episode(item["episode"]), self.map_watch_entry(item))
                )

            if len(data) < page_size:
                break
            page_count_header = response.headers.get("x-pagination-page-count")
            if page_count_header:
                try:
                    page_count = int(page_count_header)
                except (TypeError, ValueError):
                    page_count = None
                if page_count is not None and page >= page_count:
                    break
            page += 1

        logger.debug(
            "Fetched %s watch entries for Trakt show %s", len(collected), trakt_show_id
        )
        return collected

    async def add_episode_watches(
        self, watches: Sequence[tuple[int, datetime]]
    ) -> dict[str, Any]:
        """Add plays given as ``(episode trakt id, watched at)`` pairs."""

        payload = {
            "episodes": [
                {"ids": {"trakt": trakt_id}, "watched_at": self.format_datetime(watched_at)}
                for trakt_id, watched_at in watches
            ]
        }
        response = await self._request("POST", "/sync/history", json=payload)
        result = self._json(response, dict)
        self._log_not_found("add", result)
        return result

    async def remove_history_entries(self, history_ids: Sequence[int]) -> dict[str, Any]:
        response = await self._request(
            "POST", "/sync/history/remove", json={"ids": list(history_ids)}
        )
        result = self._json(response, dict)
        self._log_not_found("remove", result)
        return result

    @staticmethod
    def _log_not_found(operation: str, result: dict[str, Any]) -> None:
        not_found = result.get("not_found")
        if not isinstance(not_found, dict):
            return
        missing = {key: value for key, value in not_found.items() if value}
        if missing:
            logger.warning("Trakt could not %s some history items: %s", operation, missing)

    @staticmethod
    def format_datetime(value: datetime) -> str:
        """Format a naive UTC (or aware) datetime the way Trakt expects."""

        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return f"{value.isoformat(timespec='milliseconds')}Z"

    @staticmethod
    def map_season(payload: dict[str, Any]) -> Season:
        ids = payload.get("ids") or {}
        return Season(
            trakt_id=ids.get("trakt"),
            tmdb_id=ids.get("tmdb"),
            title=payload.get("title"),
            summary=payload.get("overview"),
            number=payload.get("number"),
            network=payload.get("network"),
            episode_count=payload.get("episode_count"),
            episodes_aired=payload.get("aired_episodes"),
            trakt_rating=payload.get("rating"),
            trakt_rating_votes=payload.get("votes"),
        )

    @staticmethod
    def map_episode(payload: dict[str, Any], *, season_number: int | None = None) -> Episode:
        ids = payload.get("ids") or {}
        return Episode(
            trakt_id=ids.get("trakt"),
            tmdb_id=ids.get("tmdb"),
            title=payload.get("title"),
            summary=payload.get("overview"),
            number=payload.get("number"),
            season_number=payload.get("season", season_number),
            first_aired=payload.get("first_aired"),
            trakt_rating=payload.get("rating"),
            trakt_rating_votes=payload.get("votes"),
        )

    @staticmethod
    def map_watch_entry(payload: dict[str, Any]) -> EpisodeWatchEntry:
        return EpisodeWatchEntry(
            trakt_id=payload.get("id"),
            watched_at=payload["watched_at"],
            pending_action=PendingAction.NOTHING,
        )
