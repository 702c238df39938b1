"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class ShowRecord(Base):
    """A followed show and its remote identifiers."""

    __tablename__ = "shows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trakt_id: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)
    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    seasons: Mapped[list["SeasonRecord"]] = relationship(
        back_populates="show", cascade="all, delete-orphan"
    )


class SeasonRecord(Base):
    """Merged season metadata."""

    __tablename__ = "seasons"
    __table_args__ = (
        UniqueConstraint("show_id", "trakt_id", name="uq_season_show_trakt"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    show_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("shows.id", ondelete="CASCADE"), index=True
    )
    trakt_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    network: Mapped[str | None] = mapped_column(String(120), nullable=True)
    episode_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episodes_aired: Mapped[int | None] = mapped_column(Integer, nullable=True)
    trakt_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    trakt_rating_votes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tmdb_poster_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tmdb_backdrop_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    show: Mapped[ShowRecord] = relationship(back_populates="seasons")
    episodes: Mapped[list["EpisodeRecord"]] = relationship(
        back_populates="season", cascade="all, delete-orphan"
    )


class EpisodeRecord(Base):
    """Merged episode metadata."""

    __tablename__ = "episodes"
    __table_args__ = (
        UniqueConstraint("season_id", "trakt_id", name="uq_episode_season_trakt"),
        Index("ix_episodes_trakt_id", "trakt_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("seasons.id", ondelete="CASCADE"), index=True
    )
    trakt_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    season_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    first_aired: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    trakt_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    trakt_rating_votes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tmdb_backdrop_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    season: Mapped[SeasonRecord] = relationship(back_populates="episodes")
    watches: Mapped[list["EpisodeWatchEntryRecord"]] = relationship(
        back_populates="episode", cascade="all, delete-orphan"
    )


class EpisodeWatchEntryRecord(Base):
    """One play of an episode plus the pending action queued for it."""

    __tablename__ = "episode_watch_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    episode_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("episodes.id", ondelete="CASCADE"), index=True
    )
    trakt_id: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)
    watched_at: Mapped[datetime] = mapped_column(DateTime)
    pending_action: Mapped[str] = mapped_column(String(16), default="nothing", index=True)

    episode: Mapped[EpisodeRecord] = relationship(back_populates="watches")
