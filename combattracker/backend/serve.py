"""Run the combat tracker API with uvicorn using environment settings."""

from __future__ import annotations

import uvicorn

from combattracker.backend.api import create_app
from combattracker.backend.config import load_settings
from combattracker.backend.logging import configure_logging, get_logger
from combattracker.backend.store import create_store


def main() -> None:
    settings = load_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    store = create_store(database_url=settings.database_url)
    get_logger(__name__).info(
        "Starting API",
        host=settings.host,
        port=settings.port,
        store=type(store).__name__,
    )
    uvicorn.run(create_app(store=store), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
