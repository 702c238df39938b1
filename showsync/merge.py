"""Field-level merging of local, Trakt and TMDb versions of an entity.

Each mergeable field maps to the ordered sources consulted for it. The first
source holding a value (anything but ``None``) wins; the local value is the
last resort, so a field that neither remote knows about is never cleared.
Fields that do not appear in a table (local ids, owning ids) are always
taken from the local record.
"""

from __future__ import annotations

from typing import Mapping, TypeVar

from pydantic import BaseModel

from .models import Episode, Season

LOCAL = "local"
TRAKT = "trakt"
TMDB = "tmdb"

Precedence = tuple[str, ...]

_DESCRIPTIVE: Precedence = (TRAKT, TMDB, LOCAL)
_TRAKT_ONLY: Precedence = (TRAKT, LOCAL)
_TMDB_ONLY: Precedence = (TMDB, LOCAL)
_TMDB_ID: Precedence = (TMDB, TRAKT, LOCAL)

SEASON_RULES: Mapping[str, Precedence] = {
    "title": _DESCRIPTIVE,
    "summary": _DESCRIPTIVE,
    "number": _DESCRIPTIVE,
    "network": _DESCRIPTIVE,
    "episode_count": _DESCRIPTIVE,
    "episodes_aired": _DESCRIPTIVE,
    "trakt_id": _TRAKT_ONLY,
    "trakt_rating": _TRAKT_ONLY,
    "trakt_rating_votes": _TRAKT_ONLY,
    "tmdb_id": _TMDB_ID,
    "tmdb_poster_path": _TMDB_ONLY,
    "tmdb_backdrop_path": _TMDB_ONLY,
}

EPISODE_RULES: Mapping[str, Precedence] = {
    "title": _DESCRIPTIVE,
    "summary": _DESCRIPTIVE,
    "number": _DESCRIPTIVE,
    "season_number": _DESCRIPTIVE,
    "first_aired": _DESCRIPTIVE,
    "trakt_id": _TRAKT_ONLY,
    "trakt_rating": _TRAKT_ONLY,
    "trakt_rating_votes": _TRAKT_ONLY,
    "tmdb_id": _TMDB_ID,
    "tmdb_backdrop_path": _TMDB_ONLY,
}

ModelT = TypeVar("ModelT", bound=BaseModel)


def merge_fields(
    rules: Mapping[str, Precedence],
    local: ModelT,
    trakt: BaseModel,
    tmdb: BaseModel,
) -> ModelT:
    """Return a copy of ``local`` with every ruled field resolved by precedence."""

    sources: dict[str, BaseModel] = {LOCAL: local, TRAKT: trakt, TMDB: tmdb}
    update: dict[str, object] = {}
    for field, precedence in rules.items():
        for source in precedence:
            value = getattr(sources[source], field)
            if value is not None:
                update[field] = value
                break
    return local.model_copy(update=update)


def merge_season(local: Season, trakt: Season, tmdb: Season) -> Season:
    return merge_fields(SEASON_RULES, local, trakt, tmdb)


def merge_episode(local: Episode, trakt: Episode, tmdb: Episode) -> Episode:
    return merge_fields(EPISODE_RULES, local, trakt, tmdb)
