"""SQLite connection and statement helpers."""

from __future__ import annotations

import re
import sqlite3
from contextlib import contextmanager, suppress
from typing import TYPE_CHECKING, Literal, TypeAlias, cast

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

# Valid SQL identifier pattern (alphanumeric and underscores, not starting with digit)
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# SQLite-compatible value types
SQLValue: TypeAlias = str | int | float | bytes | None

# SQLite transaction isolation levels
IsolationLevel: TypeAlias = Literal["DEFERRED", "EXCLUSIVE", "IMMEDIATE"] | None


@contextmanager
def connect(
    path: str,
    *,
    timeout: float = 30.0,
    isolation_level: IsolationLevel = "IMMEDIATE",
    wal_mode: bool = True,
) -> Iterator[sqlite3.Connection]:
    """Context manager for SQLite connections with automatic transaction handling.

    Opens a connection, yields it for use, and handles cleanup. On successful
    completion, commits the transaction. On any exception, rolls back and
    re-raises. The connection is always closed on exit.

    Args:
        path: Database file path, or ``:memory:`` for in-memory database.
        timeout: Seconds to wait for lock before raising OperationalError.
        isolation_level: Transaction isolation level (DEFERRED, IMMEDIATE, EXCLUSIVE).
        wal_mode: If True, enable WAL journal mode for better concurrency.

    Yields:
        SQLite connection with row_factory set to sqlite3.Row.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened.
    """
    # Connections may be handed to worker threads via anyio.to_thread
    conn = sqlite3.connect(
        path,
        timeout=timeout,
        isolation_level=isolation_level,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row

    if wal_mode and path != ":memory:":
        with suppress(sqlite3.OperationalError):
            _ = conn.execute("PRAGMA journal_mode=WAL")
        _ = conn.execute("PRAGMA busy_timeout=10000")

    try:
        yield conn
        conn.commit()
    except BaseException:
        with suppress(Exception):
            conn.rollback()
        raise
    finally:
        conn.close()


def safe_identifier(name: str) -> str:
    """Validate and quote an SQL identifier.

    Args:
        name: Table or column name.

    Returns:
        The identifier wrapped in double quotes.

    Raises:
        ValueError: If the name is not a plain identifier.
    """
    if not _IDENTIFIER_RE.match(name):
        msg = f"Invalid SQL identifier: {name!r}"
        raise ValueError(msg)
    return f'"{name}"'


def fetch_value(
    conn: sqlite3.Connection,
    sql: str,
    params: tuple[SQLValue, ...] = (),
) -> SQLValue:
    """Return the first column of the first row, or None when no row matches."""
    row = cast("sqlite3.Row | None", conn.execute(sql, params).fetchone())
    if row is None:
        return None
    return cast("SQLValue", row[0])


def upsert(
    conn: sqlite3.Connection,
    table: str,
    values: Mapping[str, SQLValue],
    *,
    conflict_columns: list[str],
) -> None:
    """Insert a row or update it when the conflict columns already exist.

    Args:
        conn: Open connection.
        table: Table name.
        values: Column to value mapping.
        conflict_columns: Columns forming the uniqueness constraint.

    Raises:
        ValueError: If any identifier is invalid.
    """
    table_sql = safe_identifier(table)
    columns = [safe_identifier(column) for column in values]
    conflict_sql = ", ".join(safe_identifier(column) for column in conflict_columns)
    updates = ", ".join(
        f"{safe_identifier(column)} = excluded.{safe_identifier(column)}"
        for column in values
        if column not in conflict_columns
    )
    placeholders = ", ".join("?" for _ in columns)
    sql = (
        f"INSERT INTO {table_sql} ({', '.join(columns)}) VALUES ({placeholders}) "  # noqa: S608
        f"ON CONFLICT ({conflict_sql}) DO UPDATE SET {updates}"
    )
    _ = conn.execute(sql, tuple(values.values()))
