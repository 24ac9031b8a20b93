"""Behaviour of the catalog session's fetch reconciliation."""

from __future__ import annotations

import asyncio

import pytest

from app.errors import CredentialsError, EmptyInputError, NotFoundError, TransportError
from app.models import CollectionDetails, CollectionRef, FilterState, ItemDetails, ItemKey, SeasonDetails
from app.services.catalog_session import (
    CREDENTIALS_MESSAGE,
    INITIAL_LOAD_MESSAGE,
    SEARCH_SLOT,
    CatalogSession,
    FetchStatus,
    Tab,
)

from fakes import FakeGateway, build_settings, movie, raising, returning, scripted, sequence, show

pytestmark = pytest.mark.anyio


def make_session(gateway: FakeGateway, **overrides) -> CatalogSession:
    return CatalogSession(build_settings(**overrides), gateway, session_id="test")


async def test_initial_load_fills_static_tabs_independently() -> None:
    """Top rated can be shown while trending is still loading."""

    gateway = FakeGateway()
    trending_handler, (trending_ready,) = scripted([movie(1)])
    gateway.handlers["trending"] = trending_handler
    gateway.handlers["top_rated"] = returning([movie(2), movie(3)])
    session = make_session(gateway)

    trending_task, top_rated_task, _ = session.load_initial()
    await top_rated_task

    assert session.state.slots["topRated"].status is FetchStatus.READY
    assert session.state.slots["trending"].status is FetchStatus.LOADING
    assert session.set_active_tab(Tab.TOP_RATED) is None
    assert [item.id for item in session.visible_items()] == [2, 3]

    trending_ready.set()
    await trending_task
    assert [item.id for item in session.state.slots["trending"].items] == [1]
    assert gateway.args("top_rated") == [("movie",)]


async def test_static_tab_fetches_only_when_cache_is_empty() -> None:
    gateway = FakeGateway()
    gateway.handlers["trending"] = returning([movie(1)])
    session = make_session(gateway)

    first = session.set_active_tab("trending")
    assert first is not None
    # A second switch while the first fetch is in flight does not issue another.
    assert session.set_active_tab("trending") is None
    await first
    assert session.set_active_tab("trending") is None
    assert gateway.count("trending") == 1


@pytest.mark.parametrize("resolution_order", [(0, 1), (1, 0)])
async def test_last_issued_fetch_wins_regardless_of_completion_order(
    resolution_order: tuple[int, int],
) -> None:
    gateway = FakeGateway()
    handler, events = scripted([movie(10)], [movie(20)])
    gateway.handlers["discover"] = handler
    session = make_session(gateway)

    tasks = [session.retry_tab(Tab.DISCOVER), session.retry_tab(Tab.DISCOVER)]
    for index in resolution_order:
        events[index].set()
        await tasks[index]

    slot = session.state.slots["discover"]
    assert [item.id for item in slot.items] == [20]
    assert slot.status is FetchStatus.READY


async def test_superseded_failure_does_not_mark_tab_failed() -> None:
    gateway = FakeGateway()
    handler, events = scripted(TransportError("boom"), [movie(5)])
    gateway.handlers["trending"] = handler
    session = make_session(gateway)

    stale = session.retry_tab(Tab.TRENDING)
    fresh = session.retry_tab(Tab.TRENDING)
    events[1].set()
    await fresh
    events[0].set()
    await stale

    slot = session.state.slots["trending"]
    assert slot.status is FetchStatus.READY
    assert slot.error is None
    assert [item.id for item in slot.items] == [5]


async def test_filter_changes_coalesce_into_one_discover_fetch() -> None:
    gateway = FakeGateway()
    gateway.handlers["discover"] = returning([movie(7)])
    session = make_session(gateway)
    await session.set_active_tab(Tab.DISCOVER)
    assert gateway.count("discover") == 1

    session.update_filters(genre=28)
    session.update_filters(sort_by="vote_average.desc")
    session.update_filters(min_rating=7.5)
    await session.settle()

    assert gateway.count("discover") == 2
    (filters,) = gateway.args("discover")[-1]
    assert filters == FilterState(genre=28, sort_by="vote_average.desc", min_rating=7.5)
    assert gateway.count("trending") == 0


async def test_unchanged_filters_do_not_refetch() -> None:
    gateway = FakeGateway()
    session = make_session(gateway)
    await session.set_active_tab(Tab.DISCOVER)

    session.update_filters(genre="all", sort_by="popularity.desc")
    await session.settle()

    assert gateway.count("discover") == 1


async def test_filters_changed_elsewhere_apply_on_return_to_discover() -> None:
    gateway = FakeGateway()
    gateway.handlers["trending"] = returning([movie(1)])
    session = make_session(gateway)
    await session.set_active_tab(Tab.TRENDING)

    session.update_filters(genre=35, language="fr")
    await session.settle()
    assert gateway.count("discover") == 0

    task = session.set_active_tab(Tab.DISCOVER)
    assert task is not None
    await session.settle()
    assert gateway.args("discover") == [(FilterState(genre=35, language="fr"),)]
    assert [item.id for item in session.state.slots["trending"].items] == [1]


async def test_repeating_discover_replaces_cache() -> None:
    gateway = FakeGateway()
    gateway.handlers["discover"] = returning([movie(1), movie(2)])
    session = make_session(gateway)

    await session.retry_tab(Tab.DISCOVER)
    first = list(session.state.slots["discover"].items)
    await session.retry_tab(Tab.DISCOVER)

    assert session.state.slots["discover"].items == first
    assert len(session.state.slots["discover"].items) == 2


async def test_typing_inside_debounce_window_searches_once() -> None:
    gateway = FakeGateway()
    gateway.handlers["search"] = returning([movie(268, "Batman")])
    session = make_session(gateway)

    session.set_search_term("bat")
    session.set_search_term("batman")
    await session.settle()

    assert gateway.args("search") == [("batman",)]
    assert [item.title for item in session.visible_items()] == ["Batman"]


@pytest.mark.parametrize("term", ["", "   ", "\t"])
async def test_blank_search_clears_results_without_calling_gateway(term: str) -> None:
    gateway = FakeGateway()
    gateway.handlers["search"] = returning([movie(1)])
    session = make_session(gateway)
    await session.search_now("alien")
    assert session.state.slots[SEARCH_SLOT].items

    session.set_search_term(term)
    await session.settle()

    assert gateway.count("search") == 1
    assert session.state.slots[SEARCH_SLOT].items == []
    assert session.state.slots[SEARCH_SLOT].status is FetchStatus.IDLE


async def test_clearing_search_discards_in_flight_result() -> None:
    gateway = FakeGateway()
    handler, (released,) = scripted([movie(1)])
    gateway.handlers["search"] = handler
    session = make_session(gateway)

    task = session.search_now("dune")
    session.set_search_term("")
    released.set()
    await task

    assert session.state.slots[SEARCH_SLOT].items == []


async def test_search_failure_keeps_previous_results() -> None:
    gateway = FakeGateway()
    gateway.handlers["search"] = returning([movie(1, "Alien")])
    gateway.handlers["trending"] = returning([movie(2)])
    session = make_session(gateway)
    await session.retry_tab(Tab.TRENDING)
    await session.search_now("alien")

    gateway.handlers["search"] = raising(TransportError("upstream down", status_code=503))
    await session.search_now("aliens")

    slot = session.state.slots[SEARCH_SLOT]
    assert slot.status is FetchStatus.FAILED
    assert slot.error == "upstream down"
    assert [item.title for item in slot.items] == ["Alien"]
    assert session.state.slots["trending"].status is FetchStatus.READY
    assert session.state.fatal_error is None


def test_search_now_rejects_blank_terms() -> None:
    session = make_session(FakeGateway())

    with pytest.raises(EmptyInputError):
        session.search_now("  ")


async def test_my_lists_projection_drops_unknown_ids() -> None:
    gateway = FakeGateway()
    gateway.handlers["trending"] = returning([movie(1), movie(4)])
    gateway.handlers["discover"] = returning([movie(2)])
    session = make_session(gateway)
    await session.retry_tab(Tab.TRENDING)
    await session.retry_tab(Tab.DISCOVER)

    for item_id in (1, 2):
        session.toggle_favorite(ItemKey("movie", item_id))
    for item_id in (2, 3):
        session.toggle_watchlist(ItemKey("movie", item_id))

    assert [item.id for item in session.my_lists()] == [1, 2]
    session.set_active_tab(Tab.MY_LISTS)
    assert [item.id for item in session.visible_items()] == [1, 2]


def test_toggles_flip_membership_per_media_kind() -> None:
    session = make_session(FakeGateway())

    assert session.toggle_favorite(ItemKey("movie", 1)) is True
    assert session.toggle_favorite(ItemKey("tv", 1)) is True
    assert session.toggle_favorite(ItemKey("movie", 1)) is False
    assert list(session.state.favorites) == [ItemKey("tv", 1)]


async def test_closing_details_before_resolution_leaves_state_unchanged() -> None:
    gateway = FakeGateway()
    handler, (released,) = scripted(ItemDetails(id=1, kind="movie", title="Heat"))
    gateway.handlers["details"] = handler
    session = make_session(gateway)

    task = session.open_details(movie(1, "Heat"))
    session.close_details()
    released.set()
    await task

    assert session.state.details is None
    assert gateway.count("similar") == 0


async def test_reopening_details_discards_previous_lookup() -> None:
    gateway = FakeGateway()
    handler, events = scripted(
        ItemDetails(id=1, kind="movie", title="First"),
        ItemDetails(id=2, kind="movie", title="Second"),
    )
    gateway.handlers["details"] = handler
    session = make_session(gateway)

    first = session.open_details(movie(1))
    second = session.open_details(movie(2))
    events[1].set()
    await second
    events[0].set()
    await first

    view = session.state.details
    assert view is not None
    assert view.details is not None
    assert view.details.title == "Second"


async def test_details_are_enriched_with_similar_and_collection() -> None:
    gateway = FakeGateway()
    gateway.handlers["details"] = returning(
        ItemDetails(
            id=603,
            kind="movie",
            title="The Matrix",
            collection=CollectionRef(id=2344, name="The Matrix Collection"),
        )
    )
    gateway.handlers["similar"] = returning([movie(604, "The Matrix Reloaded")])
    gateway.handlers["collection"] = returning(
        CollectionDetails(id=2344, name="The Matrix Collection", parts=(movie(603), movie(604)))
    )
    session = make_session(gateway)

    await session.open_details(movie(603, "The Matrix"))

    view = session.state.details
    assert view is not None and view.details is not None
    assert view.status is FetchStatus.READY
    assert view.enriching is False
    assert [item.title for item in view.details.similar] == ["The Matrix Reloaded"]
    assert [item.id for item in view.details.collection_parts] == [603, 604]
    assert gateway.args("collection") == [(2344,)]


async def test_supporting_lookup_failure_keeps_details() -> None:
    gateway = FakeGateway()
    gateway.handlers["details"] = returning(ItemDetails(id=5, kind="tv", title="Dark"))
    gateway.handlers["similar"] = raising(TransportError("nope", status_code=500))
    session = make_session(gateway)

    await session.open_details(show(5, "Dark"))

    view = session.state.details
    assert view is not None and view.details is not None
    assert view.status is FetchStatus.READY
    assert view.details.similar == ()
    assert gateway.count("collection") == 0


async def test_missing_details_are_reported_on_the_view_only() -> None:
    gateway = FakeGateway()
    gateway.handlers["details"] = raising(NotFoundError("gone", status_code=404))
    session = make_session(gateway)

    await session.open_details(movie(99))

    view = session.state.details
    assert view is not None
    assert view.status is FetchStatus.FAILED
    assert view.not_found is True
    assert session.state.fatal_error is None


async def test_load_season_for_open_show() -> None:
    gateway = FakeGateway()
    gateway.handlers["details"] = returning(ItemDetails(id=1399, kind="tv", title="Game of Thrones"))
    gateway.handlers["season"] = returning(
        SeasonDetails(show_id=1399, season_number=1, name="Season 1")
    )
    session = make_session(gateway)
    await session.open_details(show(1399))

    await session.load_season(1)

    view = session.state.details
    assert view is not None
    assert view.seasons[1].name == "Season 1"
    assert gateway.args("season") == [(1399, 1)]


def test_load_season_requires_open_show() -> None:
    session = make_session(FakeGateway())

    with pytest.raises(ValueError):
        session.load_season(1)


async def test_credentials_failure_is_fatal_and_retry_reruns_initial_load() -> None:
    gateway = FakeGateway()
    gateway.handlers["trending"] = raising(CredentialsError("bad key", status_code=401))
    gateway.handlers["top_rated"] = raising(CredentialsError("bad key", status_code=401))
    session = make_session(gateway)

    session.load_initial()
    await session.settle()
    assert session.state.fatal_error == CREDENTIALS_MESSAGE

    gateway.handlers["trending"] = returning([movie(1)])
    gateway.handlers["top_rated"] = returning([movie(2)])
    session.retry()
    await session.settle()

    assert session.state.fatal_error is None
    assert gateway.count("trending") == 2
    assert session.state.slots["topRated"].status is FetchStatus.READY


async def test_initial_load_failure_sets_global_error() -> None:
    gateway = FakeGateway()
    gateway.handlers["trending"] = raising(TransportError("timeout"))
    session = make_session(gateway)

    session.load_initial()
    await session.settle()

    assert session.state.fatal_error == INITIAL_LOAD_MESSAGE
    assert session.state.slots["trending"].status is FetchStatus.FAILED
    assert session.state.slots["topRated"].status is FetchStatus.READY


async def test_successful_tab_retry_clears_global_error() -> None:
    gateway = FakeGateway()
    gateway.handlers["trending"] = sequence(TransportError("timeout"), [movie(1)])
    session = make_session(gateway)

    session.load_initial()
    await session.settle()
    assert session.state.fatal_error == INITIAL_LOAD_MESSAGE

    await session.retry_tab(Tab.TRENDING)

    assert session.state.slots["trending"].status is FetchStatus.READY
    assert session.state.fatal_error is None


async def test_filters_returning_to_failed_set_fetch_again() -> None:
    gateway = FakeGateway()
    gateway.handlers["discover"] = sequence(TransportError("timeout"), [movie(7)])
    session = make_session(gateway)

    await session.set_active_tab(Tab.DISCOVER)
    assert session.state.slots["discover"].status is FetchStatus.FAILED

    session.update_filters(genre=28)
    session.update_filters(genre="all")
    await session.settle()

    assert gateway.args("discover") == [(FilterState(),), (FilterState(),)]
    assert session.state.slots["discover"].status is FetchStatus.READY


async def test_tab_failure_after_startup_stays_scoped() -> None:
    gateway = FakeGateway()
    gateway.handlers["discover"] = returning([movie(1)])
    session = make_session(gateway)
    await session.retry_tab(Tab.DISCOVER)

    gateway.handlers["discover"] = raising(TransportError("flaky"))
    await session.retry_tab(Tab.DISCOVER)

    slot = session.state.slots["discover"]
    assert slot.status is FetchStatus.FAILED
    assert [item.id for item in slot.items] == [1]
    assert session.state.fatal_error is None


async def test_suggest_merges_keyword_searches() -> None:
    gateway = FakeGateway()

    async def search(term: str):
        return {
            "sci-fi": [movie(1), movie(2)],
            "comedy": [movie(2), show(2)],
        }.get(term, [])

    gateway.handlers["search"] = search
    session = make_session(gateway)

    await session.suggest("A funny sci-fi movie with robots")

    assert session.state.active_tab is Tab.AI_PICKS
    assert session.state.suggestion_keywords == ("sci-fi", "comedy", "movie", "with")
    assert [item.key for item in session.visible_items()] == [
        ItemKey("movie", 1),
        ItemKey("movie", 2),
        ItemKey("tv", 2),
    ]


def test_suggest_rejects_blank_prompt() -> None:
    session = make_session(FakeGateway())

    with pytest.raises(EmptyInputError):
        session.suggest("   ")


async def test_top_rated_kind_switch_refetches_active_tab() -> None:
    gateway = FakeGateway()
    gateway.handlers["top_rated"] = returning([show(1)])
    session = make_session(gateway)
    await session.set_active_tab(Tab.TOP_RATED)

    await session.set_top_rated_kind("tv")

    assert gateway.args("top_rated") == [("movie",), ("tv",)]
    assert session.set_top_rated_kind("tv") is None


async def test_aclose_cancels_pending_search_timer() -> None:
    gateway = FakeGateway()
    session = make_session(gateway)

    session.set_search_term("matrix")
    await session.aclose()
    await asyncio.sleep(0.05)

    assert gateway.count("search") == 0


async def test_payload_marks_favorites_on_cards() -> None:
    gateway = FakeGateway()
    gateway.handlers["discover"] = returning([movie(1, "Up", poster_path="/up.jpg")])
    session = make_session(gateway)
    await session.set_active_tab(Tab.DISCOVER)
    session.toggle_favorite(ItemKey("movie", 1))

    payload = session.to_payload()

    assert payload["activeTab"] == "discover"
    assert payload["favorites"] == ["movie:1"]
    (card,) = payload["items"]
    assert card["favorite"] is True
    assert card["watchlisted"] is False
    assert card["posterUrl"] == "https://image.tmdb.org/t/p/w500/up.jpg"
    assert payload["tabs"]["discover"]["status"] == "ready"
