"""
Create the verification tables directly, for local development.

Usage:
    python -m app.scripts.init_db

Production schemas are managed with Alembic.
"""

import asyncio

import structlog

from app.core.config import get_settings
from app.core.database import engine, init_db
from app.core.logging import configure_logging

log = structlog.get_logger()


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, "text")
    await init_db()
    await engine.dispose()
    log.info("db.initialized", database_url=settings.database_url.split("@")[-1])


if __name__ == "__main__":
    asyncio.run(main())
