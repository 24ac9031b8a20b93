"""Entry point for the FastAPI-powered catalog browser backend."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .catalog_options import options_payload, random_suggestion_prompt
from .config import settings
from .errors import EmptyInputError
from .models import CatalogItem, ItemKey
from .services.catalog_session import CatalogSession, SessionStore, Tab
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SESSION_COOKIE = "cinetracker_session"
PRUNE_INTERVAL_SECONDS = 60

app: FastAPI


class TabRequest(BaseModel):
    tab: Tab


class TopRatedKindRequest(BaseModel):
    kind: str


class SearchRequest(BaseModel):
    term: str = ""
    immediate: bool = False


class SuggestRequest(BaseModel):
    prompt: str


class FilterUpdate(BaseModel):
    """Partial discover filter change; only the supplied keys are applied."""

    model_config = ConfigDict(populate_by_name=True)

    genre: int | str | None = None
    sort_by: str | None = Field(
        default=None, validation_alias=AliasChoices("sortBy", "sort_by")
    )
    language: str | None = None
    region: str | None = None
    year: int | str | None = None
    certification: str | None = None
    min_rating: float | str | None = Field(
        default=None, validation_alias=AliasChoices("minRating", "min_rating")
    )
    min_runtime: int | str | None = Field(
        default=None, validation_alias=AliasChoices("minRuntime", "min_runtime")
    )
    min_votes: int | str | None = Field(
        default=None, validation_alias=AliasChoices("minVotes", "min_votes")
    )

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    if not settings.has_credentials:
        logger.warning("TMDB_API_KEY is not set; catalog requests will fail")

    gateway = TMDBClient(settings, tmdb_http_client)
    store = SessionStore(settings, gateway)
    app.state.session_store = store
    prune_task = asyncio.create_task(_prune_loop(store))

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        prune_task.cancel()
        with suppress(asyncio.CancelledError):
            await prune_task
        await store.close_all()
        await exit_stack.aclose()


async def _prune_loop(store: SessionStore) -> None:
    while True:
        await asyncio.sleep(PRUNE_INTERVAL_SECONDS)
        try:
            await store.prune()
        except Exception as exc:  # pragma: no cover - background safety net
            logger.exception("Session pruning failed: %s", exc)


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Browse, search and track movies and shows from TMDB",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
        allow_credentials=False,
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_session_store(app: FastAPI) -> SessionStore:
    store = getattr(app.state, "session_store", None)
    if not isinstance(store, SessionStore):
        raise RuntimeError("Session store not initialised")
    return store


def register_routes(fastapi_app: FastAPI) -> None:
    def _session(request: Request, response: Response) -> CatalogSession:
        store = get_session_store(fastapi_app)
        session = store.get(request.cookies.get(SESSION_COOKIE))
        if session is None:
            session = store.create()
            response.set_cookie(
                SESSION_COOKIE,
                session.id,
                httponly=True,
                samesite="lax",
                max_age=settings.session_idle_seconds,
            )
        return session

    async def _snapshot(session: CatalogSession, wait: bool) -> dict[str, Any]:
        if wait:
            await session.settle()
        return session.to_payload()

    def _item_key(kind: str, item_id: int) -> ItemKey:
        if kind not in {"movie", "tv"}:
            raise HTTPException(status_code=404, detail="Unsupported media kind")
        return ItemKey(kind, item_id)  # type: ignore[arg-type]

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/options")
    async def catalog_options() -> dict[str, Any]:
        return options_payload()

    @fastapi_app.get("/api/suggestions/example")
    async def example_prompt() -> dict[str, str]:
        return {"prompt": random_suggestion_prompt()}

    @fastapi_app.get("/api/session")
    async def session_snapshot(
        request: Request, response: Response, wait: bool = False
    ) -> dict[str, Any]:
        session = _session(request, response)
        return await _snapshot(session, wait)

    @fastapi_app.post("/api/session/tab")
    async def change_tab(
        payload: TabRequest, request: Request, response: Response, wait: bool = False
    ) -> dict[str, Any]:
        session = _session(request, response)
        session.set_active_tab(payload.tab)
        return await _snapshot(session, wait)

    @fastapi_app.post("/api/session/tabs/{tab}/retry")
    async def retry_tab(
        tab: Tab, request: Request, response: Response, wait: bool = False
    ) -> dict[str, Any]:
        session = _session(request, response)
        session.retry_tab(tab)
        return await _snapshot(session, wait)

    @fastapi_app.post("/api/session/retry")
    async def retry_last(
        request: Request, response: Response, wait: bool = False
    ) -> dict[str, Any]:
        session = _session(request, response)
        session.retry()
        return await _snapshot(session, wait)

    @fastapi_app.post("/api/session/filters")
    async def update_filters(
        payload: FilterUpdate, request: Request, response: Response, wait: bool = False
    ) -> dict[str, Any]:
        session = _session(request, response)
        try:
            session.update_filters(**payload.changes())
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_url=False, include_context=False)
            ) from exc
        return await _snapshot(session, wait)

    @fastapi_app.post("/api/session/top-rated-kind")
    async def top_rated_kind(
        payload: TopRatedKindRequest,
        request: Request,
        response: Response,
        wait: bool = False,
    ) -> dict[str, Any]:
        session = _session(request, response)
        try:
            session.set_top_rated_kind(payload.kind)  # type: ignore[arg-type]
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return await _snapshot(session, wait)

    @fastapi_app.post("/api/session/search")
    async def search(
        payload: SearchRequest, request: Request, response: Response, wait: bool = False
    ) -> dict[str, Any]:
        session = _session(request, response)
        if payload.immediate:
            try:
                session.search_now(payload.term)
            except EmptyInputError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        else:
            session.set_search_term(payload.term)
        return await _snapshot(session, wait)

    @fastapi_app.post("/api/session/suggest")
    async def suggest(
        payload: SuggestRequest, request: Request, response: Response, wait: bool = False
    ) -> dict[str, Any]:
        session = _session(request, response)
        try:
            session.suggest(payload.prompt)
        except EmptyInputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return await _snapshot(session, wait)

    @fastapi_app.post("/api/session/favorites/{kind}/{item_id}")
    async def toggle_favorite(
        kind: str, item_id: int, request: Request, response: Response
    ) -> dict[str, Any]:
        session = _session(request, response)
        key = _item_key(kind, item_id)
        return {"key": str(key), "favorite": session.toggle_favorite(key)}

    @fastapi_app.post("/api/session/watchlist/{kind}/{item_id}")
    async def toggle_watchlist(
        kind: str, item_id: int, request: Request, response: Response
    ) -> dict[str, Any]:
        session = _session(request, response)
        key = _item_key(kind, item_id)
        return {"key": str(key), "watchlisted": session.toggle_watchlist(key)}

    @fastapi_app.get("/api/session/my-lists")
    async def my_lists(request: Request, response: Response) -> dict[str, Any]:
        session = _session(request, response)
        return session.my_lists_payload()

    # Registered before the {kind}/{item_id} route, which would otherwise match it.
    @fastapi_app.post("/api/session/details/seasons/{season_number}")
    async def load_season(
        season_number: int,
        request: Request,
        response: Response,
        wait: bool = False,
    ) -> dict[str, Any]:
        session = _session(request, response)
        try:
            session.load_season(season_number)
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if wait:
            await session.settle()
        return {"details": session.details_payload()}

    @fastapi_app.post("/api/session/details/{kind}/{item_id}")
    async def open_details(
        kind: str,
        item_id: int,
        request: Request,
        response: Response,
        wait: bool = False,
    ) -> dict[str, Any]:
        session = _session(request, response)
        key = _item_key(kind, item_id)
        item = session.find_item(key) or CatalogItem(id=key.id, kind=key.kind)
        session.open_details(item)
        if wait:
            await session.settle()
        return {"details": session.details_payload()}

    @fastapi_app.get("/api/session/details")
    async def current_details(request: Request, response: Response) -> dict[str, Any]:
        session = _session(request, response)
        return {"details": session.details_payload()}

    @fastapi_app.delete("/api/session/details")
    async def close_details(request: Request, response: Response) -> dict[str, Any]:
        session = _session(request, response)
        session.close_details()
        return {"details": None}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
