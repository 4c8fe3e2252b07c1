"""Apply the scheduler's Alembic migrations once the database answers.

Run on deploy, before the API starts and before the first nightly closeout, so
the task ledger, policy and audit tables match the models.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOGGER = logging.getLogger("studyline.migrations")
BACKEND_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_TIMEOUT = int(os.getenv("STUDYLINE_DB_MIGRATION_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("STUDYLINE_DB_MIGRATION_POLL_INTERVAL", "3"))
URL_PLACEHOLDER = "%(STUDYLINE_DATABASE_URL)s"
REQUIRED_TABLES = ("tasks", "schedule_policies", "schedule_audit_entries", "leave_records")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the scheduler schema after a readiness probe.")
    parser.add_argument("--revision", default=os.getenv("STUDYLINE_DB_MIGRATION_REVISION", "head"))
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Seconds to wait for the database.")
    parser.add_argument("--poll-interval", type=float, default=DEFAULT_POLL_INTERVAL)
    parser.add_argument("--config", default=str(BACKEND_ROOT / "alembic.ini"))
    parser.add_argument(
        "--verify",
        action="store_true",
        help="After upgrading, fail unless every scheduler table exists.",
    )
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    configured = config.get_main_option("sqlalchemy.url")
    if configured and configured != URL_PLACEHOLDER:
        return configured
    env_url = os.getenv("STUDYLINE_DATABASE_URL")
    if not env_url:
        raise RuntimeError("STUDYLINE_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url)
    return env_url


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    """Retry ``SELECT 1`` until it succeeds; give up after ``timeout`` seconds."""
    engine = create_engine(database_url, future=True, pool_pre_ping=True)
    deadline = time.time() + timeout
    last_error: Optional[Exception] = None
    try:
        while True:
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database is reachable.")
                return
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready yet: %s", exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database error during readiness probe: %s", exc)
                break
            if time.time() >= deadline:
                break
            time.sleep(poll_interval)
    finally:
        engine.dispose()
    raise RuntimeError("Database did not become ready in time.") from last_error


def missing_tables(database_url: str) -> list[str]:
    engine = create_engine(database_url, future=True)
    try:
        existing = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    return [name for name in REQUIRED_TABLES if name not in existing]


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
    verify: bool = False,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    LOGGER.info("Upgrading scheduler schema to %s", revision)
    command.upgrade(config, revision)
    if verify:
        absent = missing_tables(database_url)
        if absent:
            raise RuntimeError(f"Schema is missing tables after upgrade: {', '.join(absent)}")
    LOGGER.info("Migrations complete.")


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("STUDYLINE_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=get_alembic_config(args.config),
            verify=args.verify,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
