"""Synchronisation of seasons, episodes and watch state for a show."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Callable

from ..merge import merge_episode, merge_season
from ..models import Episode, EpisodeWatchEntry, PendingAction, Season, SeasonWithEpisodes
from ..store import LocalSeasonsEpisodesStore, MissingEntityError
from .sources import EpisodeDataSource, SeasonsEpisodesDataSource
from .trakt import TraktAuthState

logger = logging.getLogger(__name__)


class SeasonsEpisodesRepository:
    """Keeps the local catalog and watch entries in step with Trakt and TMDB.

    Catalog data is merged from Trakt (primary) and TMDB (supplementary).
    Watch state is authored locally as pending actions on watch entries and
    pushed to Trakt by :meth:`sync_episode_watches` whenever the user is
    logged in.
    """

    def __init__(
        self,
        store: LocalSeasonsEpisodesStore,
        trakt_seasons_source: SeasonsEpisodesDataSource,
        trakt_episode_source: EpisodeDataSource,
        tmdb_episode_source: EpisodeDataSource,
        auth_state: Callable[[], TraktAuthState],
    ):
        self._store = store
        self._trakt_seasons = trakt_seasons_source
        self._trakt_episode = trakt_episode_source
        self._tmdb_episode = tmdb_episode_source
        self._auth_state = auth_state

    def observe_seasons_for_show(self, show_id: int) -> AsyncIterator[list[SeasonWithEpisodes]]:
        return self._store.observe_show_seasons_with_episodes(show_id)

    def observe_episode(self, episode_id: int) -> AsyncIterator[Episode | None]:
        return self._store.observe_episode(episode_id)

    def observe_episode_watches(self, episode_id: int) -> AsyncIterator[list[EpisodeWatchEntry]]:
        return self._store.observe_episode_watches(episode_id)

    def _logged_in(self) -> bool:
        return self._auth_state() == TraktAuthState.LOGGED_IN

    # Catalog -------------------------------------------------------------------

    async def update_seasons_episodes(self, show_id: int) -> None:
        """Refresh every season and episode of a show from Trakt."""

        remote = await self._trakt_seasons.get_seasons_episodes(show_id)

        merged: list[tuple[Season, list[Episode]]] = []
        for trakt_season, trakt_episodes in remote:
            local_season = await self._find_local_season(show_id, trakt_season)
            season = merge_season(
                local_season or Season(show_id=show_id), trakt_season, Season.EMPTY
            )

            episodes: list[Episode] = []
            for trakt_episode in trakt_episodes:
                local_episode = None
                if trakt_episode.trakt_id is not None:
                    local_episode = await self._store.get_episode_with_trakt_id(
                        trakt_episode.trakt_id
                    )
                episodes.append(
                    merge_episode(
                        local_episode or Episode(season_id=season.id),
                        trakt_episode,
                        Episode.EMPTY,
                    )
                )
            merged.append((season, episodes))

        await self._store.save_seasons_episodes(show_id, merged)
        logger.info(
            "Updated %s seasons (%s episodes) for show %s",
            len(merged),
            sum(len(episodes) for _, episodes in merged),
            show_id,
        )

    async def _find_local_season(self, show_id: int, remote: Season) -> Season | None:
        if remote.trakt_id is not None:
            season = await self._store.get_season_with_trakt_id(show_id, remote.trakt_id)
            if season is not None:
                return season
        if remote.number is not None:
            season = await self._store.get_season_with_number(show_id, remote.number)
            # A season already bound to another Trakt id is a different season.
            if season is not None and season.trakt_id in (None, remote.trakt_id):
                return season
        return None

    async def update_episode(self, episode_id: int) -> None:
        """Refresh one stored episode from Trakt and TMDB in parallel."""

        local = await self._store.get_episode(episode_id)
        if local is None:
            raise MissingEntityError(f"Episode {episode_id} not found")
        season = await self._store.get_season(local.season_id) if local.season_id else None
        if season is None:
            raise MissingEntityError(f"Season for episode {episode_id} not found")
        if season.number is None or local.number is None:
            raise MissingEntityError(
                f"Episode {episode_id} lacks the season/episode numbers needed for lookup"
            )

        trakt, tmdb = await asyncio.gather(
            self._trakt_episode.get_episode(season.show_id, season.number, local.number),
            self._tmdb_episode.get_episode(season.show_id, season.number, local.number),
        )
        await self._store.save_episode(
            merge_episode(local, trakt or Episode.EMPTY, tmdb or Episode.EMPTY)
        )

    # Watch state -----------------------------------------------------------------

    async def mark_watched(
        self, episode_id: int, watched_at: datetime | None = None
    ) -> EpisodeWatchEntry:
        """Record a play locally; it is uploaded by the next watch sync."""

        if await self._store.get_episode(episode_id) is None:
            raise MissingEntityError(f"Episode {episode_id} not found")
        entry = EpisodeWatchEntry(
            episode_id=episode_id,
            watched_at=watched_at or datetime.utcnow(),
            pending_action=PendingAction.UPLOAD,
        )
        return await self._store.add_watch_entry(entry)

    async def mark_unwatched(self, episode_id: int) -> list[EpisodeWatchEntry]:
        """Queue every play of the episode for deletion."""

        entries = await self._store.get_watches_for_episode(episode_id)
        await self._store.update_watch_entries_with_action(
            [
                entry.id
                for entry in entries
                if entry.id is not None and entry.pending_action != PendingAction.DELETE
            ],
            PendingAction.DELETE,
        )
        return await self._store.get_watches_for_episode(episode_id)

    async def show_id_for_episode(self, episode_id: int) -> int:
        show_id = await self._store.show_id_for_episode_id(episode_id)
        if show_id is None:
            raise MissingEntityError(f"Episode {episode_id} not found")
        return show_id

    async def sync_episode_watches(self, show_id: int) -> None:
        """Push pending deletes, then pending uploads, then pull from Trakt.

        Each drain is shielded from cancellation so an acknowledged push is
        always followed by its local update; a cancelled sync stops between
        phases and the next sync resumes from the queue.
        """

        await asyncio.shield(self._process_pending_deletes(show_id))
        await asyncio.shield(self._process_pending_additions(show_id))
        if self._logged_in():
            await self._refresh_watches_from_remote(show_id)

    async def _process_pending_deletes(self, show_id: int) -> None:
        entries = await self._store.get_entries_with_delete_action(show_id)
        if not entries:
            return
        if self._logged_in():
            await self._trakt_seasons.remove_episode_watches(entries)
        await self._store.delete_watch_entries_with_ids(
            [entry.id for entry in entries if entry.id is not None]
        )
        logger.info("Processed %s pending watch deletions for show %s", len(entries), show_id)

    async def _process_pending_additions(self, show_id: int) -> None:
        entries = await self._store.get_entries_with_add_action(show_id)
        if not entries:
            return
        if self._logged_in():
            await self._trakt_seasons.add_episode_watches(entries)
        await self._store.update_watch_entries_with_action(
            [entry.id for entry in entries if entry.id is not None],
            PendingAction.NOTHING,
        )
        logger.info("Processed %s pending watch uploads for show %s", len(entries), show_id)

    async def _refresh_watches_from_remote(self, show_id: int) -> None:
        remote = await self._trakt_seasons.get_show_episode_watches(show_id)
        entries: list[EpisodeWatchEntry] = []
        for episode, entry in remote:
            episode_id = await self._store.get_episode_id_or_save_placeholder(show_id, episode)
            entries.append(entry.model_copy(update={"episode_id": episode_id}))
        await self._store.sync_watch_entries(show_id, entries)
