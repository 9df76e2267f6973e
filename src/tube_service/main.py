"""ASGI entrypoint for running the service."""
from __future__ import annotations

import logging

import uvicorn

from .config import Settings, get_settings


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def run() -> None:
    """Convenience wrapper used by ``python -m tube_service.main``."""

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(
        "tube_service.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
