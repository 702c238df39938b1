"""Pydantic models describing shows, seasons, episodes and watch entries."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class PendingAction(str, Enum):
    """Local intent for a watch entry that Trakt has not confirmed yet."""

    NOTHING = "nothing"
    UPLOAD = "upload"
    DELETE = "delete"


class _Entity(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Show(_Entity):
    """A followed show and the identifiers each remote knows it by."""

    id: int | None = None
    trakt_id: int | None = None
    tmdb_id: int | None = None
    title: str | None = None


class Season(_Entity):
    """Season metadata merged from Trakt and TMDb.

    Every attribute except the owning ``show_id`` may be absent (``None``);
    an absent remote value never replaces a known local one during a merge.
    """

    EMPTY: ClassVar["Season"]

    id: int | None = None
    show_id: int | None = None
    trakt_id: int | None = None
    tmdb_id: int | None = None
    title: str | None = None
    summary: str | None = None
    number: int | None = None
    network: str | None = None
    episode_count: int | None = None
    episodes_aired: int | None = None
    trakt_rating: float | None = None
    trakt_rating_votes: int | None = None
    tmdb_poster_path: str | None = None
    tmdb_backdrop_path: str | None = None


class Episode(_Entity):
    """Episode metadata merged from Trakt and TMDb."""

    EMPTY: ClassVar["Episode"]

    id: int | None = None
    season_id: int | None = None
    trakt_id: int | None = None
    tmdb_id: int | None = None
    title: str | None = None
    summary: str | None = None
    number: int | None = None
    season_number: int | None = None
    first_aired: datetime | None = None
    trakt_rating: float | None = None
    trakt_rating_votes: int | None = None
    tmdb_backdrop_path: str | None = None

    @field_validator("first_aired")
    @classmethod
    def _normalise_first_aired(cls, value: datetime | None) -> datetime | None:
        return _as_naive_utc(value)


Season.EMPTY = Season()
Episode.EMPTY = Episode()


class EpisodeWatchEntry(_Entity):
    """A single play of an episode.

    ``trakt_id`` is the Trakt history id and is only known once Trakt has
    confirmed the play. ``pending_action`` records what still has to be
    pushed for this entry.
    """

    id: int | None = None
    episode_id: int | None = None
    trakt_id: int | None = None
    watched_at: datetime
    pending_action: PendingAction = PendingAction.NOTHING

    @field_validator("watched_at")
    @classmethod
    def _normalise_watched_at(cls, value: datetime) -> datetime:
        return _as_naive_utc(value)


class SeasonWithEpisodes(BaseModel):
    """A season together with its episodes ordered by number."""

    season: Season
    episodes: list[Episode] = Field(default_factory=list)
