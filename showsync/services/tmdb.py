"""Utilities for resolving episode metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from ..config import Settings
from ..models import Episode

logger = logging.getLogger(__name__)


class TMDBError(RuntimeError):
    """Raised when TMDB cannot be reached or rejects a lookup."""


class TMDBClient:
    """Client responsible for fetching supplementary episode metadata."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def get_episode(
        self, tmdb_show_id: int, season_number: int, episode_number: int
    ) -> Episode | None:
        """Return the episode, or ``None`` when TMDB does not know it."""

        endpoint = f"/tv/{tmdb_show_id}/season/{season_number}/episode/{episode_number}"
        params = {"api_key": self._settings.tmdb_api_key, "language": "en-US"}
        try:
            response = await self._client.get(endpoint, params=params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB episode lookup %s failed: %s", endpoint, exc)
            raise TMDBError(f"TMDB episode lookup failed: {exc}") from exc

        if response.status_code == 404:
            logger.debug("TMDB has no episode at %s", endpoint)
            return None
        if response.status_code >= 400:
            logger.warning(
                "TMDB episode lookup %s failed: %s", endpoint, response.text
            )
            raise TMDBError(response.text or f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TMDBError("Unexpected non-JSON TMDB response") from exc
        if not isinstance(payload, dict):
            raise TMDBError("Unexpected TMDB response structure")
        return self.map_episode(payload)

    @classmethod
    def map_episode(cls, payload: dict[str, Any]) -> Episode:
        return Episode(
            tmdb_id=payload.get("id"),
            title=payload.get("name") or None,
            summary=payload.get("overview") or None,
            number=payload.get("episode_number"),
            season_number=payload.get("season_number"),
            first_aired=cls._parse_air_date(payload.get("air_date")),
            tmdb_backdrop_path=payload.get("still_path") or None,
        )

    @staticmethod
    def _parse_air_date(value: object) -> datetime | None:
        if not isinstance(value, str) or len(value) < 10:
            return None
        try:
            return datetime.strptime(value[:10], "%Y-%m-%d")
        except ValueError:
            return None
