"""Local persistence for shows, seasons, episodes and watch entries."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Iterable, Sequence, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .database import Base
from .db_models import EpisodeRecord, EpisodeWatchEntryRecord, SeasonRecord, ShowRecord
from .models import (
    Episode,
    EpisodeWatchEntry,
    PendingAction,
    Season,
    SeasonWithEpisodes,
    Show,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
RecordT = TypeVar("RecordT", bound=Base)

_SHOW_FIELDS = tuple(name for name in Show.model_fields if name != "id")
_SEASON_FIELDS = tuple(name for name in Season.model_fields if name != "id")
_EPISODE_FIELDS = tuple(name for name in Episode.model_fields if name != "id")

_UNSET = object()


class MissingEntityError(LookupError):
    """Raised when an operation addresses an entity that is not stored locally."""


class ChangeNotifier:
    """Monotonic change counter that observers can wait on."""

    def __init__(self) -> None:
        self._version = 0
        self._condition = asyncio.Condition()

    @property
    def version(self) -> int:
        return self._version

    async def notify(self) -> None:
        async with self._condition:
            self._version += 1
            self._condition.notify_all()

    async def wait(self, seen_version: int) -> int:
        """Block until the counter moves past ``seen_version``."""

        async with self._condition:
            await self._condition.wait_for(lambda: self._version != seen_version)
            return self._version


class LocalSeasonsEpisodesStore:
    """SQLAlchemy backed store for the catalog and the watch entry queue.

    Every write runs in its own transaction and bumps the change notifier
    once committed, which drives the ``observe_*`` queries.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._changes = ChangeNotifier()

    # Shows -----------------------------------------------------------------

    async def save_show(self, show: Show) -> Show:
        """Insert or update a show; a known Trakt id resolves to the stored row."""

        async with self._session_factory() as session:
            async with session.begin():
                if show.id is None and show.trakt_id is not None:
                    existing_id = await session.scalar(
                        select(ShowRecord.id).where(ShowRecord.trakt_id == show.trakt_id)
                    )
                    if existing_id is not None:
                        show = show.model_copy(update={"id": existing_id})
                record = await self._upsert(session, ShowRecord, show, _SHOW_FIELDS)
                await session.flush()
            saved = Show.model_validate(record)
        await self._changes.notify()
        return saved

    async def get_show(self, show_id: int) -> Show | None:
        async with self._session_factory() as session:
            record = await session.get(ShowRecord, show_id)
            return Show.model_validate(record) if record is not None else None

    # Seasons and episodes ---------------------------------------------------

    async def get_season(self, season_id: int) -> Season | None:
        async with self._session_factory() as session:
            record = await session.get(SeasonRecord, season_id)
            return Season.model_validate(record) if record is not None else None

    async def get_season_with_trakt_id(self, show_id: int, trakt_id: int) -> Season | None:
        stmt = select(SeasonRecord).where(
            SeasonRecord.show_id == show_id, SeasonRecord.trakt_id == trakt_id
        )
        return await self._first(stmt, Season)

    async def get_season_with_number(self, show_id: int, number: int) -> Season | None:
        stmt = (
            select(SeasonRecord)
            .where(SeasonRecord.show_id == show_id, SeasonRecord.number == number)
            .order_by(SeasonRecord.id)
        )
        return await self._first(stmt, Season)

    async def get_episode(self, episode_id: int) -> Episode | None:
        async with self._session_factory() as session:
            record = await session.get(EpisodeRecord, episode_id)
            return Episode.model_validate(record) if record is not None else None

    async def get_episode_with_trakt_id(self, trakt_id: int) -> Episode | None:
        stmt = (
            select(EpisodeRecord)
            .where(EpisodeRecord.trakt_id == trakt_id)
            .order_by(EpisodeRecord.id)
        )
        return await self._first(stmt, Episode)

    async def get_episode_with_tmdb_id(self, tmdb_id: int) -> Episode | None:
        stmt = (
            select(EpisodeRecord)
            .where(EpisodeRecord.tmdb_id == tmdb_id)
            .order_by(EpisodeRecord.id)
        )
        return await self._first(stmt, Episode)

    async def show_id_for_episode_id(self, episode_id: int) -> int | None:
        stmt = (
            select(SeasonRecord.show_id)
            .join(EpisodeRecord, EpisodeRecord.season_id == SeasonRecord.id)
            .where(EpisodeRecord.id == episode_id)
        )
        async with self._session_factory() as session:
            return await session.scalar(stmt)

    async def get_show_seasons_with_episodes(self, show_id: int) -> list[SeasonWithEpisodes]:
        async with self._session_factory() as session:
            seasons = (
                await session.scalars(
                    select(SeasonRecord)
                    .where(SeasonRecord.show_id == show_id)
                    .order_by(SeasonRecord.number, SeasonRecord.id)
                )
            ).all()
            if not seasons:
                return []
            episodes = (
                await session.scalars(
                    select(EpisodeRecord)
                    .where(EpisodeRecord.season_id.in_([season.id for season in seasons]))
                    .order_by(EpisodeRecord.number, EpisodeRecord.id)
                )
            ).all()

        grouped: dict[int, list[Episode]] = {season.id: [] for season in seasons}
        for episode in episodes:
            grouped[episode.season_id].append(Episode.model_validate(episode))
        return [
            SeasonWithEpisodes(
                season=Season.model_validate(season), episodes=grouped[season.id]
            )
            for season in seasons
        ]

    async def save_seasons_episodes(
        self,
        show_id: int,
        seasons: Sequence[tuple[Season, Sequence[Episode]]],
    ) -> None:
        """Persist a show's merged seasons and episodes in one transaction.

        New seasons receive their local id here, so each episode is attached
        to the id of the season it was paired with regardless of the
        ``season_id`` it carried in.
        """

        async with self._session_factory() as session:
            async with session.begin():
                for season, episodes in seasons:
                    season_record = await self._upsert(
                        session, SeasonRecord, season, _SEASON_FIELDS
                    )
                    season_record.show_id = show_id
                    await session.flush()
                    for episode in episodes:
                        episode_record = await self._upsert(
                            session, EpisodeRecord, episode, _EPISODE_FIELDS
                        )
                        episode_record.season_id = season_record.id
        logger.debug("Saved %s seasons for show %s", len(seasons), show_id)
        await self._changes.notify()

    async def save_episode(self, episode: Episode) -> Episode:
        async with self._session_factory() as session:
            async with session.begin():
                record = await self._upsert(session, EpisodeRecord, episode, _EPISODE_FIELDS)
                await session.flush()
            saved = Episode.model_validate(record)
        await self._changes.notify()
        return saved

    async def get_episode_id_or_save_placeholder(self, show_id: int, episode: Episode) -> int:
        """Return the local id for a remote episode, inserting it when unknown.

        The placeholder is attached to the show's season with the episode's
        season number, itself created as a placeholder if necessary.
        """

        created = False
        async with self._session_factory() as session:
            async with session.begin():
                if episode.trakt_id is not None:
                    existing = await session.scalar(
                        select(EpisodeRecord.id)
                        .join(SeasonRecord, EpisodeRecord.season_id == SeasonRecord.id)
                        .where(
                            SeasonRecord.show_id == show_id,
                            EpisodeRecord.trakt_id == episode.trakt_id,
                        )
                        .order_by(EpisodeRecord.id)
                        .limit(1)
                    )
                    if existing is not None:
                        return existing

                if episode.season_number is None:
                    raise ValueError("Placeholder episodes require a season number")

                season_id = await session.scalar(
                    select(SeasonRecord.id)
                    .where(
                        SeasonRecord.show_id == show_id,
                        SeasonRecord.number == episode.season_number,
                    )
                    .order_by(SeasonRecord.id)
                    .limit(1)
                )
                if season_id is None:
                    season = SeasonRecord(show_id=show_id, number=episode.season_number)
                    session.add(season)
                    await session.flush()
                    season_id = season.id

                record = EpisodeRecord()
                for name in _EPISODE_FIELDS:
                    setattr(record, name, getattr(episode, name))
                record.season_id = season_id
                session.add(record)
                await session.flush()
                episode_id = record.id
                created = True

        if created:
            logger.debug(
                "Saved placeholder episode %s (trakt %s) for show %s",
                episode_id,
                episode.trakt_id,
                show_id,
            )
            await self._changes.notify()
        return episode_id

    # Watch entries -----------------------------------------------------------

    async def get_watch_entry(self, entry_id: int) -> EpisodeWatchEntry | None:
        async with self._session_factory() as session:
            record = await session.get(EpisodeWatchEntryRecord, entry_id)
            return EpisodeWatchEntry.model_validate(record) if record is not None else None

    async def get_watches_for_episode(self, episode_id: int) -> list[EpisodeWatchEntry]:
        stmt = (
            select(EpisodeWatchEntryRecord)
            .where(EpisodeWatchEntryRecord.episode_id == episode_id)
            .order_by(EpisodeWatchEntryRecord.watched_at, EpisodeWatchEntryRecord.id)
        )
        return await self._all(stmt, EpisodeWatchEntry)

    async def add_watch_entry(self, entry: EpisodeWatchEntry) -> EpisodeWatchEntry:
        async with self._session_factory() as session:
            async with session.begin():
                record = EpisodeWatchEntryRecord(
                    episode_id=entry.episode_id,
                    trakt_id=entry.trakt_id,
                    watched_at=entry.watched_at,
                    pending_action=entry.pending_action.value,
                )
                session.add(record)
                await session.flush()
            saved = EpisodeWatchEntry.model_validate(record)
        await self._changes.notify()
        return saved

    async def get_entries_with_action(
        self, show_id: int, action: PendingAction
    ) -> list[EpisodeWatchEntry]:
        stmt = (
            self._show_entries(show_id)
            .where(EpisodeWatchEntryRecord.pending_action == action.value)
            .order_by(EpisodeWatchEntryRecord.id)
        )
        return await self._all(stmt, EpisodeWatchEntry)

    async def get_entries_with_add_action(self, show_id: int) -> list[EpisodeWatchEntry]:
        return await self.get_entries_with_action(show_id, PendingAction.UPLOAD)

    async def get_entries_with_delete_action(self, show_id: int) -> list[EpisodeWatchEntry]:
        return await self.get_entries_with_action(show_id, PendingAction.DELETE)

    async def update_watch_entries_with_action(
        self, entry_ids: Iterable[int], action: PendingAction
    ) -> None:
        ids = list(entry_ids)
        if not ids:
            return
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(EpisodeWatchEntryRecord)
                    .where(EpisodeWatchEntryRecord.id.in_(ids))
                    .values(pending_action=action.value)
                )
        await self._changes.notify()

    async def delete_watch_entries_with_ids(self, entry_ids: Iterable[int]) -> None:
        ids = list(entry_ids)
        if not ids:
            return
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(EpisodeWatchEntryRecord).where(
                        EpisodeWatchEntryRecord.id.in_(ids)
                    )
                )
        await self._changes.notify()

    async def sync_watch_entries(
        self, show_id: int, entries: Sequence[EpisodeWatchEntry]
    ) -> None:
        """Reconcile a show's watch entries with Trakt's canonical list.

        Canonical entries are upserted (matched on their Trakt id) with no
        pending action. Rows without a pending action that are missing from
        the list are removed. Rows carrying an upload or delete are left
        exactly as they are.
        """

        async with self._session_factory() as session:
            async with session.begin():
                existing = (await session.scalars(self._show_entries(show_id))).all()
                by_trakt_id = {
                    record.trakt_id: record
                    for record in existing
                    if record.trakt_id is not None
                }
                kept: set[int] = set()
                inserted = updated = 0

                for entry in entries:
                    record = (
                        by_trakt_id.get(entry.trakt_id)
                        if entry.trakt_id is not None
                        else None
                    )
                    if record is None:
                        session.add(
                            EpisodeWatchEntryRecord(
                                episode_id=entry.episode_id,
                                trakt_id=entry.trakt_id,
                                watched_at=entry.watched_at,
                                pending_action=PendingAction.NOTHING.value,
                            )
                        )
                        inserted += 1
                        continue
                    kept.add(record.id)
                    if record.pending_action != PendingAction.NOTHING.value:
                        continue
                    if (
                        record.episode_id != entry.episode_id
                        or record.watched_at != entry.watched_at
                    ):
                        record.episode_id = entry.episode_id
                        record.watched_at = entry.watched_at
                        updated += 1

                stale = [
                    record
                    for record in existing
                    if record.id not in kept
                    and record.pending_action == PendingAction.NOTHING.value
                ]
                for record in stale:
                    await session.delete(record)

        logger.info(
            "Synced watch entries for show %s: %s inserted, %s updated, %s removed",
            show_id,
            inserted,
            updated,
            len(stale),
        )
        await self._changes.notify()

    # Observation -------------------------------------------------------------

    def observe_show_seasons_with_episodes(
        self, show_id: int
    ) -> AsyncIterator[list[SeasonWithEpisodes]]:
        return self._observe(lambda: self.get_show_seasons_with_episodes(show_id))

    def observe_episode(self, episode_id: int) -> AsyncIterator[Episode | None]:
        return self._observe(lambda: self.get_episode(episode_id))

    def observe_episode_watches(
        self, episode_id: int
    ) -> AsyncIterator[list[EpisodeWatchEntry]]:
        return self._observe(lambda: self.get_watches_for_episode(episode_id))

    async def _observe(self, query: Callable[[], Awaitable[T]]) -> AsyncIterator[T]:
        """Yield the query's result now and again whenever a write changes it."""

        last: object = _UNSET
        while True:
            version = self._changes.version
            value = await query()
            if value != last:
                last = value
                yield value
            await self._changes.wait(version)

    # Helpers -------------------------------------------------------------------

    @staticmethod
    def _show_entries(show_id: int):
        return (
            select(EpisodeWatchEntryRecord)
            .join(EpisodeRecord, EpisodeWatchEntryRecord.episode_id == EpisodeRecord.id)
            .join(SeasonRecord, EpisodeRecord.season_id == SeasonRecord.id)
            .where(SeasonRecord.show_id == show_id)
        )

    @staticmethod
    async def _upsert(
        session: AsyncSession,
        record_type: type[RecordT],
        entity: BaseModel,
        fields: Sequence[str],
    ) -> RecordT:
        record = None
        entity_id = getattr(entity, "id", None)
        if entity_id is not None:
            record = await session.get(record_type, entity_id)
        if record is None:
            record = record_type()
            session.add(record)
        for name in fields:
            setattr(record, name, getattr(entity, name))
        return record

    async def _first(self, stmt, model: type[T]) -> T | None:
        async with self._session_factory() as session:
            record = (await session.scalars(stmt.limit(1))).first()
            return model.model_validate(record) if record is not None else None  # type: ignore[attr-defined]

    async def _all(self, stmt, model: type[T]) -> list[T]:
        async with self._session_factory() as session:
            records = (await session.scalars(stmt)).all()
            return [model.model_validate(record) for record in records]  # type: ignore[attr-defined]
