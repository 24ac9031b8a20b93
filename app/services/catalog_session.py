"""Per-visitor catalog state and the fetch orchestration behind it."""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
import time
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Sequence

from ..catalog_options import (
    MediaKind,
    certification_meaning,
    language_name,
    region_name,
)
from ..config import Settings
from ..debounce import Debouncer
from ..errors import CatalogError, CredentialsError, EmptyInputError, NotFoundError, TransportError
from ..models import CatalogItem, FilterState, ItemDetails, ItemKey, SeasonDetails
from ..suggestions import extract_keywords
from ..utils import average_rating, format_popularity, format_runtime, unique_in_order
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

CREDENTIALS_MESSAGE = "TMDB credentials are missing or invalid. Please check your API key."
INITIAL_LOAD_MESSAGE = "Failed to load data. Please check your connection and try again."

Loader = Callable[[], Awaitable[Sequence[CatalogItem]]]


class Tab(str, Enum):
    DISCOVER = "discover"
    TRENDING = "trending"
    TOP_RATED = "topRated"
    AI_PICKS = "aiPicks"
    MY_LISTS = "myLists"


class FetchStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


SEARCH_SLOT = "search"
# My lists is a projection over the other slots and has no slot of its own.
SLOT_NAMES: tuple[str, ...] = (
    Tab.DISCOVER.value,
    Tab.TRENDING.value,
    Tab.TOP_RATED.value,
    Tab.AI_PICKS.value,
    SEARCH_SLOT,
)


def require_text(value: str, label: str) -> str:
    """Return ``value`` stripped, rejecting blank input."""

    stripped = (value or "").strip()
    if not stripped:
        raise EmptyInputError(f"{label} must not be empty")
    return stripped


@dataclass
class ResultSlot:
    """The last applied result list for one tab, plus its fetch status."""

    name: str
    status: FetchStatus = FetchStatus.IDLE
    items: list[CatalogItem] = field(default_factory=list)
    error: str | None = None
    generation: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "error": self.error,
            "itemCount": len(self.items),
            "generation": self.generation,
        }


@dataclass
class DetailsView:
    """State of the details panel for the currently opened item."""

    item: CatalogItem
    token: int
    status: FetchStatus = FetchStatus.LOADING
    details: ItemDetails | None = None
    error: str | None = None
    not_found: bool = False
    enriching: bool = False
    seasons: dict[int, SeasonDetails] = field(default_factory=dict)
    season_errors: dict[int, str] = field(default_factory=dict)


@dataclass
class SessionState:
    """Everything the browse UI renders from."""

    active_tab: Tab = Tab.DISCOVER
    search_term: str = ""
    filters: FilterState = field(default_factory=FilterState)
    top_rated_kind: MediaKind = "movie"
    slots: dict[str, ResultSlot] = field(
        default_factory=lambda: {name: ResultSlot(name) for name in SLOT_NAMES}
    )
    favorites: dict[ItemKey, None] = field(default_factory=dict)
    watchlist: dict[ItemKey, None] = field(default_factory=dict)
    suggestion_prompt: str | None = None
    suggestion_keywords: tuple[str, ...] = ()
    details: DetailsView | None = None
    fatal_error: str | None = None


class CatalogSession:
    """Own the session state and decide which catalog calls to issue.

    State is only mutated by the methods on this class, on the event loop
    thread, after an awaited call resumes. Each fetch is tagged with a token
    from a monotonic counter; a result is applied only while its token is
    still the latest one issued for that slot, so a superseded request can
    never overwrite a newer one regardless of the order responses arrive in.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: TMDBClient,
        *,
        session_id: str | None = None,
    ):
        self.id = session_id or secrets.token_urlsafe(16)
        self._settings = settings
        self._gateway = gateway
        self.state = SessionState()
        self.last_seen = time.time()
        self._tokens = itertools.count(1)
        self._tasks: set[asyncio.Task[None]] = set()
        self._search_timer = Debouncer(settings.search_debounce_seconds, name="search")
        self._filter_timer = Debouncer(settings.filter_debounce_seconds, name="filters")
        self._discover_requested: FilterState | None = None
        self._last_operation: Callable[[], object] | None = None

    # ------------------------------------------------------------------
    # Tabs

    def load_initial(self) -> list[asyncio.Task[None]]:
        """Fetch the static tabs concurrently, plus discover when it is active."""

        self.state.fatal_error = None
        tasks = [
            self._start_fetch(Tab.TRENDING.value, self._gateway.fetch_trending, fatal=True),
            self._start_top_rated(fatal=True),
        ]
        if self.state.active_tab is Tab.DISCOVER:
            tasks.append(self._start_discover(fatal=True))
        self._last_operation = self.load_initial
        return tasks

    def set_active_tab(self, tab: Tab | str) -> asyncio.Task[None] | None:
        tab = Tab(tab)
        self.state.active_tab = tab
        if tab is Tab.TRENDING:
            slot = self._slot(Tab.TRENDING.value)
            if self._needs_fetch(slot):
                return self._start_fetch(slot.name, self._gateway.fetch_trending)
        elif tab is Tab.TOP_RATED:
            if self._needs_fetch(self._slot(Tab.TOP_RATED.value)):
                return self._start_top_rated()
        elif tab is Tab.DISCOVER:
            return self._ensure_discover()
        return None

    def set_top_rated_kind(self, kind: MediaKind) -> asyncio.Task[None] | None:
        """Switch the top-rated tab between movies and shows."""

        if kind not in ("movie", "tv"):
            raise ValueError("kind must be 'movie' or 'tv'")
        if kind == self.state.top_rated_kind:
            return None
        self.state.top_rated_kind = kind
        self._reset_slot(self._slot(Tab.TOP_RATED.value))
        if self.state.active_tab is Tab.TOP_RATED:
            return self._start_top_rated()
        return None

    def retry_tab(self, tab: Tab | str) -> asyncio.Task[None] | None:
        """Refetch one tab on user request."""

        tab = Tab(tab)
        # Retrying replaces the global error with this tab's own status.
        self.state.fatal_error = None
        if tab is Tab.TRENDING:
            return self._start_fetch(tab.value, self._gateway.fetch_trending)
        if tab is Tab.TOP_RATED:
            return self._start_top_rated()
        if tab is Tab.DISCOVER:
            self._filter_timer.cancel()
            return self._start_discover()
        if tab is Tab.AI_PICKS and self.state.suggestion_keywords:
            return self._start_fetch(
                tab.value, partial(self._search_keywords, self.state.suggestion_keywords)
            )
        return None

    def retry(self) -> object:
        """Clear the global error and re-run the last attempted operation."""

        operation = self._last_operation or self.load_initial
        self.state.fatal_error = None
        return operation()

    # ------------------------------------------------------------------
    # Discover filters

    def set_filters(self, filters: FilterState) -> None:
        if filters == self.state.filters:
            return
        self.state.filters = filters
        if self.state.active_tab is Tab.DISCOVER:
            self._filter_timer.schedule(self._on_filters_settled)

    def update_filters(self, **changes: Any) -> FilterState:
        """Apply a partial filter change and return the resulting filters."""

        filters = FilterState.model_validate(
            {**self.state.filters.model_dump(), **changes}
        )
        self.set_filters(filters)
        return self.state.filters

    def _on_filters_settled(self) -> None:
        if self.state.active_tab is not Tab.DISCOVER:
            return
        if self._discover_requested == self.state.filters:
            return
        self._start_discover()

    def _ensure_discover(self) -> asyncio.Task[None] | None:
        self._filter_timer.cancel()
        slot = self._slot(Tab.DISCOVER.value)
        if self._discover_requested != self.state.filters or self._needs_fetch(slot):
            return self._start_discover()
        return None

    # ------------------------------------------------------------------
    # Search and suggestions

    def set_search_term(self, term: str) -> None:
        """Record a keystroke; the search fires once typing pauses."""

        self.state.search_term = term
        query = term.strip()
        if not query:
            self._search_timer.cancel()
            self._reset_slot(self._slot(SEARCH_SLOT))
            return
        self._search_timer.schedule(partial(self._start_search, query))

    def search_now(self, term: str) -> asyncio.Task[None]:
        query = require_text(term, "Search term")
        self._search_timer.cancel()
        self.state.search_term = term
        return self._start_search(query)

    def suggest(self, prompt: str) -> asyncio.Task[None]:
        """Turn a free-text description into keyword searches for AI picks."""

        text = require_text(prompt, "Suggestion prompt")
        keywords = extract_keywords(text)[: self._settings.suggestion_keyword_limit]
        logger.info("Suggestion keywords for session %s: %s", self.id, ", ".join(keywords))
        self.state.suggestion_prompt = text
        self.state.suggestion_keywords = keywords
        self.state.active_tab = Tab.AI_PICKS
        return self._start_fetch(Tab.AI_PICKS.value, partial(self._search_keywords, keywords))

    def _start_search(self, query: str) -> asyncio.Task[None]:
        return self._start_fetch(SEARCH_SLOT, partial(self._gateway.search, query))

    async def _search_keywords(self, keywords: Sequence[str]) -> list[CatalogItem]:
        if not keywords:
            return []
        batches = await asyncio.gather(*(self._gateway.search(keyword) for keyword in keywords))
        merged = itertools.chain.from_iterable(batches)
        return unique_in_order(merged, key=lambda item: item.key)

    # ------------------------------------------------------------------
    # Favorites, watchlist and derived views

    def toggle_favorite(self, key: ItemKey) -> bool:
        return self._toggle(self.state.favorites, key)

    def toggle_watchlist(self, key: ItemKey) -> bool:
        return self._toggle(self.state.watchlist, key)

    @staticmethod
    def _toggle(members: dict[ItemKey, None], key: ItemKey) -> bool:
        if key in members:
            del members[key]
            return False
        members[key] = None
        return True

    def my_lists(self) -> list[CatalogItem]:
        """Favorites and watchlist entries that can be found in any loaded list."""

        index = self._item_index()
        keys = unique_in_order(
            itertools.chain(self.state.favorites, self.state.watchlist)
        )
        return [index[key] for key in keys if key in index]

    def visible_items(self) -> list[CatalogItem]:
        search = self._slot(SEARCH_SLOT)
        if self.state.search_term.strip() and search.items:
            return list(search.items)
        if self.state.active_tab is Tab.MY_LISTS:
            return self.my_lists()
        return list(self._slot(self.state.active_tab.value).items)

    def find_item(self, key: ItemKey) -> CatalogItem | None:
        return self._item_index().get(key)

    def _item_index(self) -> dict[ItemKey, CatalogItem]:
        index: dict[ItemKey, CatalogItem] = {}
        for name in SLOT_NAMES:
            for item in self.state.slots[name].items:
                index.setdefault(item.key, item)
        return index

    # ------------------------------------------------------------------
    # Details

    def open_details(self, item: CatalogItem) -> asyncio.Task[None]:
        token = next(self._tokens)
        self.state.details = DetailsView(item=item, token=token)
        return self._spawn(self._load_details(item, token), name=f"details-{token}")

    def close_details(self) -> None:
        self.state.details = None

    def load_season(self, season_number: int) -> asyncio.Task[None]:
        view = self.state.details
        if view is None or view.item.kind != "tv":
            raise ValueError("Seasons can only be loaded while a show is open")
        return self._spawn(
            self._load_season(view.item.id, season_number, view.token),
            name=f"season-{view.token}-{season_number}",
        )

    def _current_details(self, token: int) -> DetailsView | None:
        view = self.state.details
        if view is None or view.token != token:
            return None
        return view

    async def _load_details(self, item: CatalogItem, token: int) -> None:
        try:
            details = await self._gateway.fetch_details(item.id, item.kind)
        except CatalogError as exc:
            view = self._current_details(token)
            if view is None:
                logger.debug("Dropping details failure for closed view %s", item.key)
                return
            logger.warning("Could not fetch details for %s: %s", item.key, exc)
            view.status = FetchStatus.FAILED
            view.error = "Could not fetch details for this item."
            view.not_found = isinstance(exc, NotFoundError)
            return

        view = self._current_details(token)
        if view is None:
            logger.debug("Discarding details for closed view %s", item.key)
            return
        view.details = details
        view.status = FetchStatus.READY
        view.enriching = True

        lookups: list[Awaitable[Any]] = [
            self._optional(self._gateway.fetch_similar(item.id, item.kind), "similar titles", item)
        ]
        if details.collection is not None:
            lookups.append(
                self._optional(
                    self._gateway.fetch_collection(details.collection.id), "collection", item
                )
            )
        results = await asyncio.gather(*lookups)

        view = self._current_details(token)
        if view is None:
            return
        update: dict[str, Any] = {}
        similar = results[0]
        if similar is not None:
            update["similar"] = tuple(similar)
        if len(results) > 1 and results[1] is not None:
            update["collection_parts"] = results[1].parts
        if update:
            view.details = details.model_copy(update=update)
        view.enriching = False

    async def _load_season(self, show_id: int, season_number: int, token: int) -> None:
        try:
            season = await self._gateway.fetch_season(show_id, season_number)
        except CatalogError as exc:
            view = self._current_details(token)
            if view is not None:
                logger.warning(
                    "Could not fetch season %s of show %s: %s", season_number, show_id, exc
                )
                view.season_errors[season_number] = str(exc)
            return
        view = self._current_details(token)
        if view is None:
            return
        view.seasons[season_number] = season
        view.season_errors.pop(season_number, None)

    @staticmethod
    async def _optional(lookup: Awaitable[Any], label: str, item: CatalogItem) -> Any:
        try:
            return await lookup
        except TransportError as exc:
            logger.warning("Could not load %s for %s: %s", label, item.key, exc)
            return None

    # ------------------------------------------------------------------
    # Fetch plumbing

    def _slot(self, name: str) -> ResultSlot:
        return self.state.slots[name]

    @staticmethod
    def _needs_fetch(slot: ResultSlot) -> bool:
        return not slot.items and slot.status is not FetchStatus.LOADING

    def _reset_slot(self, slot: ResultSlot) -> None:
        # Taking a fresh token orphans any fetch still in flight for the slot.
        slot.generation = next(self._tokens)
        slot.items = []
        slot.status = FetchStatus.IDLE
        slot.error = None

    def _start_top_rated(self, *, fatal: bool = False) -> asyncio.Task[None]:
        task = self._start_fetch(
            Tab.TOP_RATED.value,
            partial(self._gateway.fetch_top_rated, self.state.top_rated_kind),
            fatal=fatal,
        )
        self._last_operation = partial(self._start_top_rated, fatal=fatal)
        return task

    def _start_discover(self, *, fatal: bool = False) -> asyncio.Task[None]:
        filters = self.state.filters
        self._discover_requested = filters
        task = self._start_fetch(
            Tab.DISCOVER.value, partial(self._gateway.discover, filters), fatal=fatal
        )
        self._last_operation = partial(self._start_discover, fatal=fatal)
        return task

    def _start_fetch(
        self, name: str, loader: Loader, *, fatal: bool = False
    ) -> asyncio.Task[None]:
        slot = self._slot(name)
        token = next(self._tokens)
        slot.generation = token
        slot.status = FetchStatus.LOADING
        slot.error = None
        self._last_operation = partial(self._start_fetch, name, loader, fatal=fatal)
        return self._spawn(self._run_fetch(slot, token, loader, fatal=fatal), name=f"{name}-{token}")

    async def _run_fetch(
        self, slot: ResultSlot, token: int, loader: Loader, *, fatal: bool
    ) -> None:
        try:
            items = await loader()
        except CatalogError as exc:
            if slot.generation != token:
                logger.debug("Ignoring failure of superseded %s fetch %s", slot.name, token)
                return
            logger.warning("Loading %s failed: %s", slot.name, exc)
            slot.status = FetchStatus.FAILED
            slot.error = str(exc)
            if slot.name == Tab.DISCOVER.value:
                # Settling back on these filters must fetch them again.
                self._discover_requested = None
            if isinstance(exc, CredentialsError):
                self.state.fatal_error = CREDENTIALS_MESSAGE
            elif fatal:
                self.state.fatal_error = INITIAL_LOAD_MESSAGE
            return

        if slot.generation != token:
            logger.debug(
                "Discarding superseded %s result (fetch %s, current %s)",
                slot.name,
                token,
                slot.generation,
            )
            return
        slot.items = list(items)
        slot.status = FetchStatus.READY
        slot.error = None

    def _spawn(self, coro: Awaitable[None], *, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def settle(self) -> None:
        """Wait until no timer is pending and no fetch is in flight."""

        while True:
            await self._search_timer.wait()
            await self._filter_timer.wait()
            pending = [task for task in self._tasks if not task.done()]
            if pending:
                await asyncio.gather(*pending)
                continue
            if self._search_timer.pending or self._filter_timer.pending:
                continue
            return

    async def aclose(self) -> None:
        """Cancel timers and outstanding fetches when the session goes away."""

        await self._search_timer.aclose()
        await self._filter_timer.aclose()
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        for task in pending:
            with suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Presentation

    def touch(self) -> None:
        self.last_seen = time.time()

    def card(self, item: CatalogItem) -> dict[str, object]:
        payload = item.to_card(
            poster_base_url=self._settings.poster_base_url,
            backdrop_base_url=self._settings.backdrop_base_url,
            placeholder_base_url=self._settings.placeholder_image_url,
        )
        payload["favorite"] = item.key in self.state.favorites
        payload["watchlisted"] = item.key in self.state.watchlist
        return payload

    def cards(self, items: Iterable[CatalogItem]) -> list[dict[str, object]]:
        return [self.card(item) for item in items]

    def details_payload(self) -> dict[str, Any] | None:
        view = self.state.details
        if view is None:
            return None
        return {
            "item": self.card(view.item),
            "status": view.status.value,
            "error": view.error,
            "notFound": view.not_found,
            "enriching": view.enriching,
            "details": view.details.model_dump(mode="json") if view.details else None,
            "similar": self.cards(view.details.similar) if view.details else [],
            "collectionParts": self.cards(view.details.collection_parts) if view.details else [],
            "seasons": {
                str(number): season.model_dump(mode="json")
                for number, season in sorted(view.seasons.items())
            },
            "seasonErrors": {str(number): error for number, error in view.season_errors.items()},
            "display": self._details_display(view),
        }

    @staticmethod
    def _details_display(view: DetailsView) -> dict[str, str | None]:
        item = view.details or view.item
        runtime = view.details.runtime_minutes if view.details else None
        return {
            "runtime": format_runtime(runtime),
            "popularity": format_popularity(item.popularity),
            "language": language_name(item.original_language),
        }

    def my_lists_payload(self) -> dict[str, Any]:
        items = self.my_lists()
        return {
            "items": self.cards(items),
            "favoriteCount": len(self.state.favorites),
            "watchlistCount": len(self.state.watchlist),
            "averageRating": average_rating([item.vote_average for item in items]),
        }

    def to_payload(self) -> dict[str, Any]:
        state = self.state
        return {
            "sessionId": self.id,
            "activeTab": state.active_tab.value,
            "searchTerm": state.search_term,
            "filters": state.filters.to_payload(),
            "filterLabels": {
                "language": language_name(state.filters.language),
                "region": region_name(state.filters.region),
                "certification": certification_meaning(state.filters.certification),
            },
            "topRatedKind": state.top_rated_kind,
            "tabs": {name: slot.to_payload() for name, slot in state.slots.items()},
            "items": self.cards(self.visible_items()),
            "favorites": [str(key) for key in state.favorites],
            "watchlist": [str(key) for key in state.watchlist],
            "suggestion": {
                "prompt": state.suggestion_prompt,
                "keywords": list(state.suggestion_keywords),
            },
            "details": self.details_payload(),
            "fatalError": state.fatal_error,
            "loading": any(
                slot.status is FetchStatus.LOADING for slot in state.slots.values()
            ),
        }


class SessionStore:
    """Keep one :class:`CatalogSession` per visitor and expire idle ones."""

    def __init__(self, settings: Settings, gateway: TMDBClient):
        self._settings = settings
        self._gateway = gateway
        self._sessions: dict[str, CatalogSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str | None) -> CatalogSession | None:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    def create(self, *, load: bool = True) -> CatalogSession:
        session = CatalogSession(self._settings, self._gateway)
        self._sessions[session.id] = session
        logger.info("Created catalog session %s", session.id)
        if load:
            session.load_initial()
        return session

    async def prune(self) -> int:
        """Close sessions idle for longer than the configured window."""

        cutoff = time.time() - self._settings.session_idle_seconds
        expired = [key for key, session in self._sessions.items() if session.last_seen <= cutoff]
        for key in expired:
            session = self._sessions.pop(key)
            await session.aclose()
        if expired:
            logger.info("Expired %s idle catalog sessions", len(expired))
        return len(expired)

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.aclose()
