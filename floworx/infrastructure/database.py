"""Database access for the feedback store

FloWorx keeps ONE SQLite database (FLOWORX_DB_PATH). The only table the core
owns is ``classification_feedback``; everything else lives in the delivery
layer.

Provides:
- Connection context managers with consistent pragmas
- Transaction helper (commit on success, rollback on error)
- Retry on SQLITE_BUSY with exponential backoff
- Idempotent schema initialisation
"""

from __future__ import annotations

import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

from floworx.config import DB_CONNECT_TIMEOUT, DB_PATH
from floworx.observability.logging import get_logger

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)

FEEDBACK_SCHEMA = """
CREATE TABLE IF NOT EXISTS classification_feedback (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    email_subject TEXT NOT NULL,
    email_from TEXT DEFAULT '' NOT NULL,
    email_body_preview TEXT DEFAULT '' NOT NULL,
    original_categories TEXT NOT NULL,
    corrected_categories TEXT NOT NULL,
    confidence_rating INTEGER NOT NULL CHECK (confidence_rating BETWEEN 1 AND 5),
    correction_reason TEXT,
    training_status TEXT DEFAULT 'pending' NOT NULL
        CHECK (training_status IN ('pending', 'approved', 'used_in_training')),
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_feedback_tenant_created
    ON classification_feedback (tenant_id, created_at);
CREATE INDEX IF NOT EXISTS idx_feedback_status
    ON classification_feedback (training_status);
"""


def retry_on_db_lock(
    max_retries: int = 5,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors

    Side Effects:
        - Sleeps between retries (exponential backoff with jitter)
        - Logs a warning per retry and an error when retries are exhausted
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s",
                            max_retries,
                            e,
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    sleep_time = delay + random.uniform(0, delay * 0.1)
                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )
                    time.sleep(sleep_time)
            raise RuntimeError("unreachable")

        return wrapper  # type: ignore[return-value]

    return decorator


def connect(db_path: Path | str | None = None) -> sqlite3.Connection:
    """
    Open a connection with the standard pragmas and Row factory.

    ``":memory:"`` is accepted for tests.
    """
    path = str(db_path) if db_path is not None else str(DB_PATH)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=DB_CONNECT_TIMEOUT)
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db_connection(db_path: Path | str | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Connection context manager; the connection is closed on exit.

    Usage:
        with get_db_connection() as conn:
            rows = conn.execute("SELECT * FROM classification_feedback").fetchall()
    """
    conn = connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def db_transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """
    Commit on success, roll back on error.

    Side Effects:
        - Commits or rolls back the current transaction on ``conn``
    """
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_database(conn: sqlite3.Connection) -> None:
    """
    Create the feedback schema (idempotent).

    Side Effects:
        - Creates tables and indexes if they don't exist
    """
    conn.executescript(FEEDBACK_SCHEMA)
    conn.commit()
