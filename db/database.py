import sqlite3
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Hashable, Iterator, Optional

from loguru import logger

from .schema import SCHEMA_SQL, INDEXES_SQL, SCHEMA_VERSION

CONFIG_DIR = Path.home() / ".bookcoach"
DB_PATH = CONFIG_DIR / "bookcoach.db"


class StoreError(Exception):
    """A read or write against the record store failed. Safe to retry."""


class InvariantViolation(RuntimeError):
    """Stored records break an invariant the services rely on."""


# a lock lives only while some caller holds it
_entity_locks = weakref.WeakValueDictionary()
_entity_locks_guard = threading.Lock()


def entity_lock(key: Hashable) -> threading.RLock:
    """Return the process-wide lock serializing writes for one entity key."""
    with _entity_locks_guard:
        lock = _entity_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _entity_locks[key] = lock
        return lock


def idea_key(book_id: str, idea_id: str) -> tuple:
    return ("idea", book_id, idea_id)


def book_key(book_id: str) -> tuple:
    return ("book", book_id)


def init_db():
    """Initialize the database by creating tables and indexes if they don't exist."""
    CONFIG_DIR.mkdir(exist_ok=True)
    with get_conn() as conn:
        conn.executescript(SCHEMA_SQL)
        conn.executescript(INDEXES_SQL)
        ensure_schema_version(conn)
    logger.info("Database ready at {}", DB_PATH)

def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the SQLite schema version from PRAGMA user_version."""
    cursor = conn.cursor()
    cursor.execute("PRAGMA user_version")
    row = cursor.fetchone()
    return int(row[0]) if row else 0

def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Set the SQLite schema version via PRAGMA user_version."""
    conn.execute(f"PRAGMA user_version = {int(version)}")

def ensure_schema_version(conn: sqlite3.Connection) -> None:
    """Ensure the current schema version is written to the database."""
    current = get_schema_version(conn)
    if current != SCHEMA_VERSION:
        set_schema_version(conn, SCHEMA_VERSION)


@contextmanager
def transaction(conn: sqlite3.Connection, key: Optional[Hashable] = None) -> Iterator[sqlite3.Connection]:
    """Run a block atomically, serialized per entity key.

    Nested calls join the outer transaction. Any sqlite3.Error is rolled back
    and re-raised as StoreError.
    """
    lock = entity_lock(key) if key is not None else None
    if lock is not None:
        lock.acquire()
    try:
        if conn.in_transaction:
            try:
                yield conn
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc
            return
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            _rollback(conn)
            logger.error("Store write failed for {}: {}", key, exc)
            raise StoreError(str(exc)) from exc
        except BaseException:
            _rollback(conn)
            raise
    finally:
        if lock is not None:
            lock.release()


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.rollback()


@contextmanager
def reading():
    """Translate sqlite3 errors raised by plain reads into StoreError."""
    try:
        yield
    except sqlite3.Error as exc:
        logger.error("Store read failed: {}", exc)
        raise StoreError(str(exc)) from exc


@contextmanager
def get_conn():
    """Context manager for SQLite connection, using row_factory for dict-like rows."""
    conn = sqlite3.connect(DB_PATH, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()

def get_db():
    """FastAPI dependency that yields a DB connection and closes it afterwards."""
    with get_conn() as conn:
        yield conn
