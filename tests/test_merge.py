"""Field precedence behaviour of the merge engine."""

from __future__ import annotations

from datetime import datetime

import pytest

from showsync.merge import EPISODE_RULES, SEASON_RULES, merge_episode, merge_season
from showsync.models import Episode, Season


def test_merge_season_combines_trakt_title_with_tmdb_network() -> None:
    local = Season(id=7, show_id=1, title="Old", network=None)
    trakt = Season(title="New", network=None)
    tmdb = Season(title=None, network="NBC")

    merged = merge_season(local, trakt, tmdb)

    assert merged.title == "New"
    assert merged.network == "NBC"
    assert merged.id == 7
    assert merged.show_id == 1


def test_merge_episode_prefers_trakt_title_regardless_of_tmdb() -> None:
    trakt = Episode(title="Pilot")
    tmdb = Episode(title=None, summary="From TMDB", number=1, tmdb_id=99)

    merged = merge_episode(Episode(season_id=3), trakt, tmdb)

    assert merged.title == "Pilot"
    assert merged.summary == "From TMDB"
    assert merged.number == 1
    assert merged.season_id == 3


def test_merge_never_clears_known_local_values() -> None:
    local = Episode(
        id=5,
        season_id=2,
        trakt_id=10,
        tmdb_id=20,
        title="Known",
        summary="Known summary",
        number=4,
        season_number=1,
        first_aired=datetime(2020, 1, 1, 20, 0),
        trakt_rating=8.5,
        trakt_rating_votes=120,
        tmdb_backdrop_path="/still.jpg",
    )

    assert merge_episode(local, Episode.EMPTY, Episode.EMPTY) == local


def test_merge_season_never_clears_known_local_values() -> None:
    local = Season(
        id=1,
        show_id=1,
        trakt_id=11,
        tmdb_id=22,
        title="Season 1",
        number=1,
        network="HBO",
        episode_count=10,
        episodes_aired=10,
        trakt_rating=7.0,
        trakt_rating_votes=3,
        tmdb_poster_path="/poster.jpg",
        tmdb_backdrop_path="/backdrop.jpg",
    )

    assert merge_season(local, Season.EMPTY, Season.EMPTY) == local


def test_merge_with_empty_local_fills_from_trakt_then_tmdb() -> None:
    trakt = Episode(trakt_id=1, title="Trakt title", trakt_rating=9.1)
    tmdb = Episode(
        tmdb_id=2,
        title="TMDB title",
        summary="TMDB summary",
        tmdb_backdrop_path="/b.jpg",
    )

    merged = merge_episode(Episode.EMPTY, trakt, tmdb)

    assert merged == Episode(
        trakt_id=1,
        tmdb_id=2,
        title="Trakt title",
        summary="TMDB summary",
        trakt_rating=9.1,
        tmdb_backdrop_path="/b.jpg",
    )


def test_trakt_specific_fields_ignore_tmdb() -> None:
    local = Episode(trakt_id=1, trakt_rating=5.0)
    tmdb = Episode(trakt_id=999, trakt_rating=1.0, trakt_rating_votes=50)

    merged = merge_episode(local, Episode.EMPTY, tmdb)

    assert merged.trakt_id == 1
    assert merged.trakt_rating == 5.0
    assert merged.trakt_rating_votes is None


def test_tmdb_id_falls_back_to_trakt_but_images_do_not() -> None:
    trakt = Season(tmdb_id=42, tmdb_poster_path="/ignored.jpg")

    merged = merge_season(Season(tmdb_poster_path="/local.jpg"), trakt, Season.EMPTY)

    assert merged.tmdb_id == 42
    assert merged.tmdb_poster_path == "/local.jpg"


def test_tmdb_id_prefers_tmdb_over_trakt() -> None:
    merged = merge_episode(Episode.EMPTY, Episode(tmdb_id=1), Episode(tmdb_id=2))

    assert merged.tmdb_id == 2


def test_merge_does_not_mutate_inputs() -> None:
    local = Season(title="Old")
    trakt = Season(title="New")

    merge_season(local, trakt, Season.EMPTY)

    assert local.title == "Old"
    assert trakt.title == "New"


@pytest.mark.parametrize(
    ("rules", "model"),
    [(SEASON_RULES, Season), (EPISODE_RULES, Episode)],
)
def test_rules_never_touch_local_identity(rules, model) -> None:
    """Local ids and owning ids are always kept from the local record."""

    assert "id" not in rules
    assert not {"show_id", "season_id"} & set(rules)
    assert set(rules) <= set(model.model_fields)
