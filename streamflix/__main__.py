"""Run the StreamFlix backend with ``python -m streamflix``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Serve ``app.main:app`` on the configured host and port."""

    logging.basicConfig(level=logging.INFO)
    development = settings.environment == "development"
    logger.info(
        "Starting %s on %s:%s (%s store)",
        settings.app_name,
        settings.server_host,
        settings.server_port,
        "database" if settings.uses_database else "in-memory",
    )
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=development,
        log_level="debug" if development else "info",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
