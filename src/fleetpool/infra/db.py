"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a database connection from DATABASE_URL
- txn(): Context manager for short, safe transactions
- fetchone/fetchall: Query helpers
- for_update(): SELECT ... FOR UPDATE helper
- is_uuid(): Guard for caller-supplied ids before they reach a uuid column
- normalize_id(): Canonical form of caller-supplied UUIDs
"""

import os
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor
from psycopg2.extensions import parse_dsn


def _dsn_has_password(dsn: str) -> bool:
    try:
        return bool(parse_dsn(dsn).get("password"))
    except psycopg2.ProgrammingError:
        return False


def get_conn() -> PgConnection:
    """Get a new database connection from DATABASE_URL.

    When the DSN carries no password and DB_PASSWORD is set, the password
    is passed separately (secret-manager style deployments).

    Returns:
        psycopg2 connection object.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=db_password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception.

    Args:
        conn: Optional existing connection. If None, creates new one.

    Yields:
        Cursor for executing queries within the transaction.

    Example:
        with txn() as cur:
            cur.execute("INSERT INTO t (x) VALUES (%s)", (1,))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row.

    Returns:
        Single row tuple or None if no results.
    """
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> list[tuple[Any, ...]]:
    """Execute query and fetch all rows."""
    cur.execute(query, params)
    return cur.fetchall()


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    nowait: bool = False,
    skip_locked: bool = False,
) -> tuple[Any, ...] | None:
    """Execute SELECT ... FOR UPDATE and fetch one row.

    Appends FOR UPDATE clause to the query. Use within a transaction
    to lock the selected row until commit/rollback.

    Args:
        cur: Database cursor.
        query: SELECT query (without FOR UPDATE).
        params: Query parameters.
        nowait: If True, fail immediately if row is locked.
        skip_locked: If True, skip locked rows.

    Returns:
        Single row tuple or None if no results.

    Raises:
        ValueError: If both nowait and skip_locked are True.
    """
    if nowait and skip_locked:
        raise ValueError("Cannot use both nowait and skip_locked")

    suffix = " FOR UPDATE"
    if nowait:
        suffix += " NOWAIT"
    elif skip_locked:
        suffix += " SKIP LOCKED"

    full_query = query.rstrip().rstrip(";") + suffix
    cur.execute(full_query, params)
    return cur.fetchone()


def is_uuid(value: Any) -> bool:
    """True if ``value`` parses as a UUID (ids from URLs are untrusted)."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def normalize_id(value: Any) -> Any:
    """Canonical (lowercase, hyphenated) form of a UUID string.

    The store returns ids in this form, so caller ids are normalised before
    they are compared with stored ones. Values that are not UUIDs (and None)
    come back unchanged and later resolve as not found.
    """
    if value is None:
        return None
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        return value
