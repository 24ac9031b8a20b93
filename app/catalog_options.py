"""Static option tables shown by the browse filters."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Literal


MediaKind = Literal["movie", "tv"]

SortKey = Literal[
    "popularity.desc",
    "vote_average.desc",
    "release_date.desc",
    "primary_release_date.desc",
    "revenue.desc",
    "vote_count.desc",
]


@dataclass(frozen=True)
class SortOption:
    """A server-side sort expression accepted by the discover endpoint."""

    key: SortKey
    label: str


@dataclass(frozen=True)
class LanguageOption:
    code: str
    english_name: str
    native_name: str


@dataclass(frozen=True)
class RegionOption:
    code: str
    english_name: str


@dataclass(frozen=True)
class CertificationOption:
    certification: str
    meaning: str


GENRES: dict[int, str] = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}

SORT_OPTIONS: tuple[SortOption, ...] = (
    SortOption(key="popularity.desc", label="Popularity"),
    SortOption(key="vote_average.desc", label="Rating"),
    SortOption(key="release_date.desc", label="Newest"),
    SortOption(key="primary_release_date.desc", label="Premiere date"),
    SortOption(key="revenue.desc", label="Box office"),
    SortOption(key="vote_count.desc", label="Most voted"),
)

LANGUAGES: tuple[LanguageOption, ...] = (
    LanguageOption("en", "English", "English"),
    LanguageOption("es", "Spanish", "Español"),
    LanguageOption("fr", "French", "Français"),
    LanguageOption("de", "German", "Deutsch"),
    LanguageOption("it", "Italian", "Italiano"),
    LanguageOption("ja", "Japanese", "日本語"),
    LanguageOption("ko", "Korean", "한국어/조선말"),
    LanguageOption("zh", "Mandarin", "普通话"),
    LanguageOption("hi", "Hindi", "हिन्दी"),
    LanguageOption("pt", "Portuguese", "Português"),
    LanguageOption("ru", "Russian", "Pусский"),
    LanguageOption("ar", "Arabic", "العربية"),
)

REGIONS: tuple[RegionOption, ...] = (
    RegionOption("US", "United States"),
    RegionOption("GB", "United Kingdom"),
    RegionOption("CA", "Canada"),
    RegionOption("FR", "France"),
    RegionOption("DE", "Germany"),
    RegionOption("IT", "Italy"),
    RegionOption("ES", "Spain"),
    RegionOption("JP", "Japan"),
    RegionOption("KR", "South Korea"),
    RegionOption("CN", "China"),
    RegionOption("IN", "India"),
    RegionOption("BR", "Brazil"),
    RegionOption("MX", "Mexico"),
    RegionOption("AU", "Australia"),
)

# Certifications are always interpreted against the US rating board.
CERTIFICATION_COUNTRY = "US"

US_CERTIFICATIONS: tuple[CertificationOption, ...] = (
    CertificationOption("G", "General Audiences"),
    CertificationOption("PG", "Parental Guidance Suggested"),
    CertificationOption("PG-13", "Parents Strongly Cautioned"),
    CertificationOption("R", "Restricted"),
    CertificationOption("NC-17", "Adults Only"),
)

SUGGESTION_PROMPTS: tuple[str, ...] = (
    "A heartwarming story about friendship and adventure",
    "Dark psychological thriller with plot twists",
    "Romantic comedy set in a big city",
    "Epic fantasy adventure with magical creatures",
    "Intense action movie with car chases",
    "Coming-of-age drama about teenagers",
    "Space exploration science fiction",
    "Historical drama set during World War II",
    "Horror movie with supernatural elements",
    "Musical with memorable songs and dance numbers",
    "Time travel adventure with comedic elements",
    "Detective mystery in a noir setting",
    "Superhero movie with complex characters",
    "Animated adventure for the whole family",
    "Dystopian future with rebellion themes",
)


def genre_names(genre_ids: list[int] | tuple[int, ...], *, limit: int = 3) -> list[str]:
    """Return known genre names for the ids, preserving order."""

    names = [GENRES[genre_id] for genre_id in genre_ids if genre_id in GENRES]
    return names[:limit]


def language_name(code: str | None) -> str | None:
    if not code:
        return None
    for option in LANGUAGES:
        if option.code == code:
            return option.english_name
    return code.upper()


def region_name(code: str | None) -> str | None:
    if not code:
        return None
    for option in REGIONS:
        if option.code == code:
            return option.english_name
    return code


def certification_meaning(certification: str | None) -> str | None:
    if not certification:
        return None
    for option in US_CERTIFICATIONS:
        if option.certification == certification:
            return option.meaning
    return certification


def random_suggestion_prompt(rng: random.Random | None = None) -> str:
    """Return one of the example prompts for the suggestion box."""

    chooser = rng or random
    return chooser.choice(SUGGESTION_PROMPTS)


def options_payload() -> dict[str, object]:
    """Return every option table in a JSON-ready shape."""

    return {
        "genres": [{"id": genre_id, "name": name} for genre_id, name in GENRES.items()],
        "sortOptions": [{"value": option.key, "label": option.label} for option in SORT_OPTIONS],
        "languages": [
            {"code": option.code, "englishName": option.english_name, "name": option.native_name}
            for option in LANGUAGES
        ],
        "regions": [
            {"code": option.code, "englishName": option.english_name} for option in REGIONS
        ],
        "certifications": [
            {"certification": option.certification, "meaning": option.meaning}
            for option in US_CERTIFICATIONS
        ],
        "certificationCountry": CERTIFICATION_COUNTRY,
        "suggestionPrompts": list(SUGGESTION_PROMPTS),
    }
