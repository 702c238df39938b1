"""Entry point for the FastAPI-powered episode sync service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import settings
from .database import Database
from .models import Episode, EpisodeWatchEntry, SeasonWithEpisodes, Show
from .services.seasons_episodes import SeasonsEpisodesRepository
from .services.sources import (
    TmdbEpisodeDataSource,
    TraktEpisodeDataSource,
    TraktSeasonsEpisodesDataSource,
)
from .services.tmdb import TMDBClient, TMDBError
from .services.trakt import TraktClient, TraktError
from .store import LocalSeasonsEpisodesStore, MissingEntityError

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI


class ShowPayload(BaseModel):
    trakt_id: int | None = None
    tmdb_id: int | None = None
    title: str | None = None


class MarkWatchedPayload(BaseModel):
    watched_at: datetime | None = None


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    trakt_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.trakt_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    tmdb_client: TMDBClient | None = None
    if settings.tmdb_api_key:
        tmdb_http_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.tmdb_api_url),
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        )
        tmdb_client = TMDBClient(settings, tmdb_http_client)
    else:
        logger.info("TMDB_API_KEY not configured, TMDB metadata disabled")

    database = Database(settings.database_url)
    await database.create_all()

    store = LocalSeasonsEpisodesStore(database.session_factory)
    trakt = TraktClient(settings, trakt_http_client)
    repository = SeasonsEpisodesRepository(
        store,
        TraktSeasonsEpisodesDataSource(trakt, store),
        TraktEpisodeDataSource(trakt, store),
        TmdbEpisodeDataSource(tmdb_client, store),
        trakt.auth_state,
    )

    fastapi_app.state.database = database
    fastapi_app.state.store = store
    fastapi_app.state.repository = repository

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Show, season and episode watch state synchronised with Trakt and TMDB",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_repository(app: FastAPI) -> SeasonsEpisodesRepository:
    repository = getattr(app.state, "repository", None)
    if not isinstance(repository, SeasonsEpisodesRepository):
        raise RuntimeError("Repository not initialised")
    return repository


def get_store(app: FastAPI) -> LocalSeasonsEpisodesStore:
    store = getattr(app.state, "store", None)
    if not isinstance(store, LocalSeasonsEpisodesStore):
        raise RuntimeError("Store not initialised")
    return store


def register_routes(fastapi_app: FastAPI) -> None:
    async def _run(operation):
        try:
            return await operation
        except MissingEntityError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except (TraktError, TMDBError) as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    async def _sync_after_action(episode_id: int) -> None:
        repository = get_repository(fastapi_app)
        show_id = await repository.show_id_for_episode(episode_id)
        try:
            await repository.sync_episode_watches(show_id)
        except (TraktError, TMDBError, MissingEntityError) as exc:
            logger.warning(
                "Watch sync for show %s failed, action stays queued: %s", show_id, exc
            )

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/shows", status_code=201)
    async def register_show(payload: ShowPayload) -> Show:
        store = get_store(fastapi_app)
        return await store.save_show(Show(**payload.model_dump()))

    @fastapi_app.get("/shows/{show_id}/seasons")
    async def show_seasons(show_id: int) -> list[SeasonWithEpisodes]:
        store = get_store(fastapi_app)
        return await store.get_show_seasons_with_episodes(show_id)

    @fastapi_app.post("/shows/{show_id}/seasons/refresh")
    async def refresh_show_seasons(show_id: int) -> list[SeasonWithEpisodes]:
        repository = get_repository(fastapi_app)
        await _run(repository.update_seasons_episodes(show_id))
        return await get_store(fastapi_app).get_show_seasons_with_episodes(show_id)

    @fastapi_app.post("/shows/{show_id}/watches/sync")
    async def sync_show_watches(show_id: int) -> dict[str, str]:
        repository = get_repository(fastapi_app)
        await _run(repository.sync_episode_watches(show_id))
        return {"status": "ok"}

    @fastapi_app.get("/episodes/{episode_id}")
    async def episode_details(episode_id: int) -> Episode:
        episode = await get_store(fastapi_app).get_episode(episode_id)
        if episode is None:
            raise HTTPException(status_code=404, detail=f"Episode {episode_id} not found")
        return episode

    @fastapi_app.post("/episodes/{episode_id}/refresh")
    async def refresh_episode(episode_id: int) -> Episode | None:
        repository = get_repository(fastapi_app)
        await _run(repository.update_episode(episode_id))
        return await get_store(fastapi_app).get_episode(episode_id)

    @fastapi_app.get("/episodes/{episode_id}/watches")
    async def episode_watches(episode_id: int) -> list[EpisodeWatchEntry]:
        return await get_store(fastapi_app).get_watches_for_episode(episode_id)

    @fastapi_app.post("/episodes/{episode_id}/watches", status_code=201)
    async def mark_episode_watched(
        episode_id: int, payload: MarkWatchedPayload | None = None
    ) -> list[EpisodeWatchEntry]:
        repository = get_repository(fastapi_app)
        watched_at = payload.watched_at if payload is not None else None
        await _run(repository.mark_watched(episode_id, watched_at))
        await _run(_sync_after_action(episode_id))
        return await get_store(fastapi_app).get_watches_for_episode(episode_id)

    @fastapi_app.delete("/episodes/{episode_id}/watches")
    async def mark_episode_unwatched(episode_id: int) -> list[EpisodeWatchEntry]:
        repository = get_repository(fastapi_app)
        await _run(repository.mark_unwatched(episode_id))
        await _run(_sync_after_action(episode_id))
        return await get_store(fastapi_app).get_watches_for_episode(episode_id)


app = create_app()
