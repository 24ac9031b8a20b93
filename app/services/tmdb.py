"""Client for The Movie Database (TMDB) v3 API."""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

import httpx
from pydantic import ValidationError

from ..catalog_options import MediaKind
from ..config import Settings
from ..errors import CredentialsError, EmptyInputError, NotFoundError, TransportError
from ..models import CatalogItem, CollectionDetails, FilterState, ItemDetails, SeasonDetails

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TMDBClient:
    """Translate typed catalog requests into TMDB calls and typed results.

    The client never touches session state; every method either returns data
    or raises a :class:`~app.errors.TransportError` subclass.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def fetch_trending(self) -> list[CatalogItem]:
        """Return this week's trending movies and shows."""

        payload = await self._get("/trending/all/week")
        return self._parse_results(payload)

    async def fetch_top_rated(self, kind: MediaKind = "movie") -> list[CatalogItem]:
        payload = await self._get(f"/{kind}/top_rated")
        return self._parse_results(payload, kind=kind)

    async def search(self, term: str) -> list[CatalogItem]:
        """Search movies and shows; people in the results are dropped."""

        query = term.strip()
        if not query:
            raise EmptyInputError("Search term must not be empty")
        payload = await self._get(
            "/search/multi", {"query": query, "include_adult": "false"}
        )
        return self._parse_results(payload)

    async def discover(self, filters: FilterState) -> list[CatalogItem]:
        """Return movies matching the discover filters."""

        payload = await self._get(
            "/discover/movie",
            {"include_adult": "false", **filters.to_query_params()},
        )
        return self._parse_results(payload, kind="movie")

    async def fetch_details(self, item_id: int, kind: MediaKind) -> ItemDetails:
        endpoint = f"/{kind}/{item_id}"
        payload = await self._get(
            endpoint,
            {"append_to_response": "credits"},
            lookup=True,
        )
        return self._build(
            endpoint,
            lambda: ItemDetails.from_tmdb_details(
                payload, kind=kind, cast_limit=self._settings.cast_limit
            ),
        )

    async def fetch_similar(self, item_id: int, kind: MediaKind) -> list[CatalogItem]:
        payload = await self._get(f"/{kind}/{item_id}/similar", lookup=True)
        return self._parse_results(payload, kind=kind)

    async def fetch_collection(self, collection_id: int) -> CollectionDetails:
        endpoint = f"/collection/{collection_id}"
        payload = await self._get(endpoint, lookup=True)
        return self._build(endpoint, lambda: CollectionDetails.from_tmdb(payload))

    async def fetch_season(self, show_id: int, season_number: int) -> SeasonDetails:
        endpoint = f"/tv/{show_id}/season/{season_number}"
        payload = await self._get(endpoint, lookup=True)
        return self._build(endpoint, lambda: SeasonDetails.from_tmdb(show_id, payload))

    async def _get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        *,
        lookup: bool = False,
    ) -> dict[str, Any]:
        """Issue a GET request and return the decoded JSON object.

        ``lookup`` marks single-entity endpoints, where a 404 is reported as
        :class:`NotFoundError` instead of a generic transport failure.
        """

        api_key = self._settings.tmdb_api_key
        if not api_key:
            raise CredentialsError("TMDB API key is not configured")

        query: dict[str, Any] = {
            "api_key": api_key,
            "language": self._settings.tmdb_language,
        }
        if params:
            query.update(params)

        try:
            response = await self._client.get(endpoint, params=query)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", endpoint, exc)
            raise TransportError(f"Could not reach TMDB: {exc.__class__.__name__}") from exc

        status = response.status_code
        if status == 401:
            logger.warning("TMDB rejected the configured API key for %s", endpoint)
            raise CredentialsError("TMDB rejected the API key", status_code=status)
        if status == 404 and lookup:
            logger.info("TMDB resource %s not found", endpoint)
            raise NotFoundError(f"{endpoint} was not found", status_code=status)
        if status >= 400:
            logger.warning(
                "TMDB request to %s failed with %s: %s", endpoint, status, response.text
            )
            raise TransportError(
                f"TMDB returned HTTP {status} for {endpoint}", status_code=status
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(f"TMDB returned invalid JSON for {endpoint}") from exc
        if not isinstance(data, dict):
            raise TransportError(f"TMDB returned an unexpected payload for {endpoint}")
        return data

    @staticmethod
    def _build(endpoint: str, factory: Callable[[], T]) -> T:
        """Run a model factory, reporting a malformed payload as a transport failure."""

        try:
            return factory()
        except (ValidationError, KeyError, TypeError, ValueError) as exc:
            logger.warning("TMDB returned a malformed payload for %s: %s", endpoint, exc)
            raise TransportError(f"TMDB returned a malformed payload for {endpoint}") from exc

    @staticmethod
    def _parse_results(
        payload: dict[str, Any], *, kind: MediaKind | None = None
    ) -> list[CatalogItem]:
        items: list[CatalogItem] = []
        for entry in payload.get("results") or []:
            if not isinstance(entry, dict) or entry.get("id") is None:
                continue
            if kind is None and entry.get("media_type") not in (None, "movie", "tv"):
                continue
            try:
                items.append(CatalogItem.from_tmdb(entry, kind=kind))
            except ValidationError as exc:
                logger.warning("Skipping malformed TMDB result %s: %s", entry.get("id"), exc)
        return items
