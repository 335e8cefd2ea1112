"""Database URL helpers for Alembic migrations.

The service connects with psycopg2 using DATABASE_URL, which may be a URL
or a libpq ``key=value`` DSN. Alembic needs a SQLAlchemy URL, so DSNs are
converted here. Kept apart from env.py so they can be tested without
triggering alembic.context at import time.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL, make_url

DRIVER = "postgresql+psycopg2"


def _libpq_dsn_to_url(dsn: str) -> URL:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory and is passed as
    the ``host`` query parameter.
    """
    params = parse_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD") or None
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return URL.create(
            DRIVER,
            username=params.get("user"),
            password=password,
            database=params.get("dbname"),
            query={"host": host},
        )

    return URL.create(
        DRIVER,
        username=params.get("user"),
        password=password,
        host=host,
        port=int(params.get("port", 5432)),
        database=params.get("dbname"),
    )


def _get_database_url() -> URL:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)

    parsed = make_url(url.replace("postgres://", "postgresql://", 1))
    parsed = parsed.set(drivername=DRIVER)
    if not parsed.password and os.environ.get("DB_PASSWORD"):
        parsed = parsed.set(password=os.environ["DB_PASSWORD"])
    return parsed
