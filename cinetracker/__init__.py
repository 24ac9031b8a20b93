"""CineTracker: browse, search and track movies and shows from TMDB."""

from __future__ import annotations

__version__ = "1.0.0"

__all__ = ["__version__", "create_app"]


def create_app():
    """Build a fresh FastAPI application for the catalog browser."""

    from app.main import create_app as build

    return build()
