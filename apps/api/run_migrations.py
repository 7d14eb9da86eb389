#!/usr/bin/env python3
"""
Boot step for the API container: wait for the database, then `alembic upgrade head`.

Exits non-zero when the database never comes up or an upgrade fails, so the
API is never started against an unknown schema.
"""
import logging
import os
import sys
import time

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import NullPool

from core.database import _build_database_url
from core.logging import setup_logging

logger = logging.getLogger("run_migrations")

READY_ATTEMPTS = 30
READY_DELAY_S = 1.0


def wait_for_database(url: str, attempts: int = READY_ATTEMPTS, delay_s: float = READY_DELAY_S) -> bool:
    engine = create_engine(url, poolclass=NullPool)
    try:
        for attempt in range(1, attempts + 1):
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                return True
            except OperationalError as e:
                logger.info(f"Database unavailable (attempt {attempt}/{attempts}): {e.orig}")
                time.sleep(delay_s)
        return False
    finally:
        engine.dispose()


def alembic_config() -> Config:
    return Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))


def main() -> int:
    setup_logging()
    url = _build_database_url()

    if not wait_for_database(url):
        logger.error("Database did not become ready, giving up")
        return 1

    try:
        command.upgrade(alembic_config(), "head")
    except Exception:
        logger.exception("Alembic upgrade failed")
        return 1

    logger.info("Database schema is at head")
    return 0


if __name__ == "__main__":
    sys.exit(main())
