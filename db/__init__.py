"""SQLite helpers for the catalog store.

Every caller opens its own short-lived connection, so a long running scan
never holds a connection that the query layer needs. WAL mode lets readers
proceed while a writer is active.
"""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
import sqlite3
from typing import Iterator, Union

_DB_PATH: Path | None = None
_SCHEMA_PATH = Path(__file__).resolve().with_name("schema.sql")
_BUSY_TIMEOUT_MS = 30000


def configure(db_file: Union[str, Path]) -> Path:
    """Point the catalog at `db_file` (relative paths resolve against the cwd); creates the parent dir."""
    target = Path(db_file).expanduser().resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    global _DB_PATH
    _DB_PATH = target
    return target


def path() -> Path:
    """Currently configured catalog file. RuntimeError until configure()/init() ran."""
    if _DB_PATH is not None:
        return _DB_PATH
    raise RuntimeError("catalog database not configured; call db.init() first")


def init(db_path: Union[str, Path]) -> Path:
    """configure() + ensure_schema() in one call; used at startup and by tools."""
    resolved = configure(db_path)
    ensure_schema()
    return resolved


def _casefold(value):
    # Unicode-aware lowering for title search; SQLite's LIKE only folds ASCII.
    return value.casefold() if isinstance(value, str) else value


def connect(*, autocommit: bool = False) -> sqlite3.Connection:
    """
    Return a configured sqlite3 connection.
    With autocommit=True the driver issues no implicit BEGIN; callers manage
    transactions explicitly (see transaction()).
    """
    conn = sqlite3.connect(
        path(),
        check_same_thread=False,
        timeout=_BUSY_TIMEOUT_MS / 1000,
        isolation_level=None if autocommit else "",
    )
    conn.row_factory = sqlite3.Row
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    conn.execute(f"PRAGMA busy_timeout = {_BUSY_TIMEOUT_MS};")
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.OperationalError:
        pass
    return conn


@contextmanager
def session() -> Iterator[sqlite3.Connection]:
    """Context manager that commits on success and rolls back on error."""
    conn = connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """
    BEGIN IMMEDIATE transaction: takes the write lock up front so a
    read-then-write sequence inside it cannot interleave with another writer.
    """
    conn = connect(autocommit=True)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except Exception:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def ensure_schema() -> None:
    """Create missing tables and indexes; schema.sql only uses IF NOT EXISTS, so reruns are no-ops."""
    conn = connect()
    try:
        conn.executescript(_SCHEMA_PATH.read_text(encoding="utf-8"))
    finally:
        conn.close()


__all__ = [
    "configure",
    "path",
    "init",
    "connect",
    "session",
    "transaction",
    "ensure_schema",
]
