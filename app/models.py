"""Pydantic models describing catalog payloads."""

from __future__ import annotations

from typing import Any, Literal, Mapping, NamedTuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .catalog_options import CERTIFICATION_COUNTRY, MediaKind, SortKey, genre_names
from .utils import build_image_url, extract_year, placeholder_image_url

ALL_GENRES = "all"


class ItemKey(NamedTuple):
    """Identity of a catalog item; ids are only unique per media kind."""

    kind: MediaKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


def infer_media_kind(payload: Mapping[str, Any]) -> MediaKind:
    """Return the media kind of a raw TMDB result."""

    media_type = payload.get("media_type")
    if media_type in {"movie", "tv"}:
        return media_type
    if "title" in payload:
        return "movie"
    if "name" in payload:
        return "tv"
    return "movie"


class CatalogItem(BaseModel):
    """A single movie or show as returned by a list endpoint."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    title: str = Field(
        default="Unknown Title",
        validation_alias=AliasChoices("title", "name"),
    )
    kind: MediaKind = Field(validation_alias=AliasChoices("kind", "media_type"))
    release_date: str | None = Field(
        default=None,
        validation_alias=AliasChoices("release_date", "first_air_date"),
    )
    overview: str | None = None
    genre_ids: tuple[int, ...] = ()
    vote_average: float = Field(default=0.0, ge=0, le=10)
    vote_count: int = 0
    popularity: float = 0.0
    poster_path: str | None = None
    backdrop_path: str | None = None
    original_language: str | None = None

    @field_validator("release_date", "overview", "poster_path", "backdrop_path", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "Unknown Title"
        return value

    @classmethod
    def from_tmdb(
        cls, payload: Mapping[str, Any], *, kind: MediaKind | None = None
    ) -> "CatalogItem":
        """Build an item from a raw TMDB result, tagging or inferring its kind."""

        data = dict(payload)
        data["kind"] = kind or infer_media_kind(payload)
        data.pop("media_type", None)
        if not data.get("release_date") and data.get("first_air_date"):
            data["release_date"] = data["first_air_date"]
        data.pop("first_air_date", None)
        if not data.get("title") and data.get("name"):
            data["title"] = data["name"]
        data.pop("name", None)
        return cls.model_validate(data)

    @property
    def key(self) -> ItemKey:
        return ItemKey(self.kind, self.id)

    @property
    def year(self) -> int | None:
        return extract_year(self.release_date)

    def poster_url(self, base_url: str, placeholder_base_url: str) -> str:
        """Return the poster URL, falling back to a title placeholder."""

        return build_image_url(self.poster_path, base_url) or placeholder_image_url(
            self.title, placeholder_base_url
        )

    def backdrop_url(self, base_url: str) -> str | None:
        return build_image_url(self.backdrop_path, base_url)

    def to_card(
        self, *, poster_base_url: str, backdrop_base_url: str, placeholder_base_url: str
    ) -> dict[str, object]:
        """Return the JSON shape rendered by a result grid card."""

        return {
            "id": self.id,
            "key": str(self.key),
            "kind": self.kind,
            "title": self.title,
            "releaseDate": self.release_date,
            "year": self.year,
            "overview": self.overview,
            "genreIds": list(self.genre_ids),
            "genres": genre_names(self.genre_ids),
            "voteAverage": self.vote_average,
            "popularity": self.popularity,
            "posterUrl": self.poster_url(poster_base_url, placeholder_base_url),
            "backdropUrl": self.backdrop_url(backdrop_base_url),
        }


class CastMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    character: str | None = None
    profile_path: str | None = None
    order: int | None = None


class SeasonSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    season_number: int
    name: str | None = None
    episode_count: int | None = None
    air_date: str | None = None
    poster_path: str | None = None


class Episode(BaseModel):
    model_config = ConfigDict(frozen=True)

    episode_number: int
    name: str | None = None
    overview: str | None = None
    air_date: str | None = None
    runtime: int | None = None
    vote_average: float = 0.0
    still_path: str | None = None


class SeasonDetails(BaseModel):
    """One season of a show with its episode list."""

    model_config = ConfigDict(frozen=True)

    show_id: int
    season_number: int
    name: str | None = None
    overview: str | None = None
    air_date: str | None = None
    poster_path: str | None = None
    episodes: tuple[Episode, ...] = ()

    @classmethod
    def from_tmdb(cls, show_id: int, payload: Mapping[str, Any]) -> "SeasonDetails":
        episodes = tuple(
            Episode.model_validate(entry)
            for entry in payload.get("episodes") or []
            if isinstance(entry, dict) and entry.get("episode_number") is not None
        )
        return cls(
            show_id=show_id,
            season_number=int(payload["season_number"]),
            name=payload.get("name"),
            overview=payload.get("overview") or None,
            air_date=payload.get("air_date"),
            poster_path=payload.get("poster_path"),
            episodes=episodes,
        )


class CollectionRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    poster_path: str | None = None
    backdrop_path: str | None = None


class CollectionDetails(BaseModel):
    """A movie collection (franchise) with its member films."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    overview: str | None = None
    parts: tuple[CatalogItem, ...] = ()

    @classmethod
    def from_tmdb(cls, payload: Mapping[str, Any]) -> "CollectionDetails":
        parts = [
            CatalogItem.from_tmdb(entry, kind="movie")
            for entry in payload.get("parts") or []
            if isinstance(entry, dict) and entry.get("id") is not None
        ]
        # Undated parts sort last.
        parts.sort(key=lambda item: item.release_date or "9999")
        return cls(
            id=int(payload["id"]),
            name=str(payload.get("name") or "Collection"),
            overview=payload.get("overview") or None,
            parts=tuple(parts),
        )


class ItemDetails(CatalogItem):
    """The full record shown when a single item is opened."""

    runtime_minutes: int | None = None
    genres: tuple[str, ...] = ()
    tagline: str | None = None
    status: str | None = None
    number_of_seasons: int | None = None
    number_of_episodes: int | None = None
    seasons: tuple[SeasonSummary, ...] = ()
    cast: tuple[CastMember, ...] = ()
    collection: CollectionRef | None = None
    similar: tuple[CatalogItem, ...] = ()
    collection_parts: tuple[CatalogItem, ...] = ()

    @classmethod
    def from_tmdb_details(
        cls, payload: Mapping[str, Any], *, kind: MediaKind, cast_limit: int = 12
    ) -> "ItemDetails":
        """Build details from a ``/movie/{id}`` or ``/tv/{id}`` response with credits."""

        base = CatalogItem.from_tmdb(payload, kind=kind).model_dump()
        genres = payload.get("genres") or []
        base["genre_ids"] = tuple(
            int(genre["id"]) for genre in genres if isinstance(genre, dict) and "id" in genre
        ) or base["genre_ids"]

        runtime = payload.get("runtime")
        if runtime is None and kind == "tv":
            episode_runtimes = payload.get("episode_run_time") or []
            runtime = episode_runtimes[0] if episode_runtimes else None

        credits = payload.get("credits") or {}
        cast_entries = [
            entry
            for entry in credits.get("cast") or []
            if isinstance(entry, dict) and entry.get("id") is not None and entry.get("name")
        ]
        cast_entries.sort(key=lambda entry: entry.get("order", len(cast_entries)))
        cast = tuple(
            CastMember.model_validate(entry) for entry in cast_entries[:cast_limit]
        )

        seasons = tuple(
            SeasonSummary.model_validate(entry)
            for entry in payload.get("seasons") or []
            if isinstance(entry, dict) and entry.get("season_number") is not None
        )

        raw_collection = payload.get("belongs_to_collection")
        collection = (
            CollectionRef.model_validate(raw_collection)
            if isinstance(raw_collection, dict) and raw_collection.get("id") is not None
            else None
        )

        return cls(
            **base,
            runtime_minutes=runtime or None,
            genres=tuple(
                str(genre["name"]) for genre in genres if isinstance(genre, dict) and genre.get("name")
            ),
            tagline=payload.get("tagline") or None,
            status=payload.get("status"),
            number_of_seasons=payload.get("number_of_seasons"),
            number_of_episodes=payload.get("number_of_episodes"),
            seasons=seasons,
            cast=cast,
            collection=collection,
        )


class FilterState(BaseModel):
    """Discover filters; absent refinements are never sent upstream."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    genre: int | Literal["all"] = ALL_GENRES
    sort_by: SortKey = Field(
        default="popularity.desc", validation_alias=AliasChoices("sort_by", "sortBy")
    )
    language: str | None = None
    region: str | None = None
    year: int | None = Field(default=None, ge=1870, le=2100)
    certification: str | None = None
    min_rating: float | None = Field(
        default=None, ge=0, le=10, validation_alias=AliasChoices("min_rating", "minRating")
    )
    min_runtime: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("min_runtime", "minRuntime")
    )
    min_votes: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("min_votes", "minVotes")
    )

    @field_validator("genre", mode="before")
    @classmethod
    def _parse_genre(cls, value: object) -> object:
        if value is None or value == "":
            return ALL_GENRES
        if isinstance(value, str):
            stripped = value.strip().lower()
            if stripped == ALL_GENRES:
                return ALL_GENRES
            try:
                return int(stripped)
            except ValueError as exc:
                raise ValueError("genre must be a genre id or 'all'") from exc
        return value

    @field_validator("language", "region", "certification", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("year", "min_rating", "min_runtime", "min_votes", mode="before")
    @classmethod
    def _blank_number(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_query_params(self) -> dict[str, str | int | float]:
        """Return discover query parameters for the fields that are present."""

        params: dict[str, str | int | float] = {"sort_by": self.sort_by}
        if self.genre != ALL_GENRES:
            params["with_genres"] = self.genre
        if self.language is not None:
            params["with_original_language"] = self.language
        if self.region is not None:
            params["region"] = self.region
        if self.year is not None:
            params["primary_release_year"] = self.year
        if self.certification is not None:
            params["certification"] = self.certification
            params["certification_country"] = CERTIFICATION_COUNTRY
        if self.min_rating is not None:
            params["vote_average.gte"] = self.min_rating
        if self.min_runtime is not None:
            params["with_runtime.gte"] = self.min_runtime
        if self.min_votes is not None:
            params["vote_count.gte"] = self.min_votes
        return params

    def to_payload(self) -> dict[str, object]:
        return {
            "genre": self.genre,
            "sortBy": self.sort_by,
            "language": self.language,
            "region": self.region,
            "year": self.year,
            "certification": self.certification,
            "minRating": self.min_rating,
            "minRuntime": self.min_runtime,
            "minVotes": self.min_votes,
        }
