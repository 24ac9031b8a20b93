"""Run the CineTracker API with ``python -m cinetracker``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import get_settings

logger = logging.getLogger("cinetracker")


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=logging.INFO)
    if not settings.has_credentials:
        logger.warning(
            "TMDB_API_KEY is empty; every catalog request will report missing credentials"
        )
    logger.info(
        "Serving %s on %s:%s (%s)",
        settings.app_name,
        settings.server_host,
        settings.server_port,
        settings.environment,
    )
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
        log_level="info",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
