"""Remote data sources addressed by local show identifiers.

The repository only knows local ids. These adapters translate them into the
identifiers Trakt and TMDB use before delegating to the HTTP clients.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol, Sequence

from ..models import Episode, EpisodeWatchEntry, Season, Show
from ..store import LocalSeasonsEpisodesStore, MissingEntityError
from .tmdb import TMDBClient
from .trakt import TraktClient

logger = logging.getLogger(__name__)


class SeasonsEpisodesDataSource(Protocol):
    async def get_seasons_episodes(self, show_id: int) -> list[tuple[Season, list[Episode]]]: ...

    async def get_show_episode_watches(
        self, show_id: int
    ) -> list[tuple[Episode, EpisodeWatchEntry]]: ...

    async def add_episode_watches(self, entries: Sequence[EpisodeWatchEntry]) -> None: ...

    async def remove_episode_watches(self, entries: Sequence[EpisodeWatchEntry]) -> None: ...


class EpisodeDataSource(Protocol):
    async def get_episode(
        self, show_id: int, season_number: int, episode_number: int
    ) -> Episode | None: ...


async def _require_show(store: LocalSeasonsEpisodesStore, show_id: int) -> Show:
    show = await store.get_show(show_id)
    if show is None:
        raise MissingEntityError(f"Show {show_id} not found")
    return show


class TraktSeasonsEpisodesDataSource:
    """Catalog and watch history for a show, backed by Trakt."""

    def __init__(self, client: TraktClient, store: LocalSeasonsEpisodesStore):
        self._client = client
        self._store = store

    async def _trakt_show_id(self, show_id: int) -> int:
        show = await _require_show(self._store, show_id)
        if show.trakt_id is None:
            raise MissingEntityError(f"Show {show_id} has no Trakt id")
        return show.trakt_id

    async def get_seasons_episodes(self, show_id: int) -> list[tuple[Season, list[Episode]]]:
        return await self._client.get_seasons_episodes(await self._trakt_show_id(show_id))

    async def get_show_episode_watches(
        self, show_id: int
    ) -> list[tuple[Episode, EpisodeWatchEntry]]:
        return await self._client.get_show_episode_watches(await self._trakt_show_id(show_id))

    async def add_episode_watches(self, entries: Sequence[EpisodeWatchEntry]) -> None:
        watches: list[tuple[int, datetime]] = []
        for entry in entries:
            episode = (
                await self._store.get_episode(entry.episode_id)
                if entry.episode_id is not None
                else None
            )
            if episode is None or episode.trakt_id is None:
                logger.warning(
                    "Skipping upload of watch entry %s: episode %s has no Trakt id",
                    entry.id,
                    entry.episode_id,
                )
                continue
            watches.append((episode.trakt_id, entry.watched_at))
        if watches:
            await self._client.add_episode_watches(watches)

    async def remove_episode_watches(self, entries: Sequence[EpisodeWatchEntry]) -> None:
        history_ids = [entry.trakt_id for entry in entries if entry.trakt_id is not None]
        skipped = len(entries) - len(history_ids)
        if skipped:
            logger.debug("%s pending deletes were never confirmed by Trakt", skipped)
        if history_ids:
            await self._client.remove_history_entries(history_ids)


class TraktEpisodeDataSource:
    """Single episode lookups against Trakt."""

    def __init__(self, client: TraktClient, store: LocalSeasonsEpisodesStore):
        self._client = client
        self._store = store

    async def get_episode(
        self, show_id: int, season_number: int, episode_number: int
    ) -> Episode | None:
        show = await _require_show(self._store, show_id)
        if show.trakt_id is None:
            return None
        return await self._client.get_episode(show.trakt_id, season_number, episode_number)


class TmdbEpisodeDataSource:
    """Single episode lookups against TMDB; silent when TMDB is not configured."""

    def __init__(self, client: TMDBClient | None, store: LocalSeasonsEpisodesStore):
        self._client = client
        self._store = store

    async def get_episode(
        self, show_id: int, season_number: int, episode_number: int
    ) -> Episode | None:
        if self._client is None:
            return None
        show = await _require_show(self._store, show_id)
        if show.tmdb_id is None:
            logger.debug("Show %s has no TMDB id, skipping episode lookup", show_id)
            return None
        return await self._client.get_episode(show.tmdb_id, season_number, episode_number)
