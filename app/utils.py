"""Utility helpers for the CineTracker service."""

from __future__ import annotations

import re
from typing import Hashable, Iterable, Sequence, TypeVar
from urllib.parse import quote_plus

T = TypeVar("T")

WHITESPACE_RE = re.compile(r"\s+")


def build_image_url(path: str | None, base_url: str) -> str | None:
    """Join an image path fragment onto a CDN base URL."""

    if not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def placeholder_image_url(title: str, base_url: str) -> str:
    """Return a deterministic placeholder image URL labelled with ``title``."""

    label = WHITESPACE_RE.sub("+", title.strip())
    return f"{base_url}?text={quote_plus(label, safe='+')}"


def extract_year(date_value: object) -> int | None:
    if not isinstance(date_value, str) or len(date_value) < 4:
        return None
    try:
        return int(date_value[:4])
    except ValueError:
        return None


def format_runtime(minutes: int | None) -> str:
    if not minutes:
        return "Unknown"
    hours, remaining = divmod(int(minutes), 60)
    if hours == 0:
        return f"{remaining}m"
    return f"{hours}h {remaining}m"


def format_popularity(popularity: float | None) -> str:
    value = popularity or 0
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(round(value))


def average_rating(ratings: Sequence[float]) -> float:
    """Return the mean rating rounded to one decimal place."""

    if not ratings:
        return 0.0
    return round(sum(ratings) / len(ratings), 1)


def unique_in_order(values: Iterable[T], *, key=None) -> list[T]:
    """Drop repeated values while keeping first occurrences in order."""

    seen: set[Hashable] = set()
    unique: list[T] = []
    for value in values:
        marker = key(value) if key is not None else value
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(value)
    return unique
