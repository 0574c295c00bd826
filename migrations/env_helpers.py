"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without alembic.context.
DATABASE_URL may be a URL or a libpq key=value DSN; both become a
SQLAlchemy psycopg2 URL. DB_PASSWORD fills in a missing password.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL, make_url

DRIVER = "postgresql+psycopg2"


def dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN (quoted values allowed) to a SQLAlchemy URL."""
    tokens = parse_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD") or None
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        # Unix socket directory goes in the query string
        url = URL.create(
            DRIVER,
            username=tokens.get("user"),
            password=password,
            database=tokens.get("dbname"),
            query={"host": host},
        )
    else:
        url = URL.create(
            DRIVER,
            username=tokens.get("user"),
            password=password,
            host=host,
            port=int(tokens.get("port", "5432")),
            database=tokens.get("dbname"),
        )
    return url.render_as_string(hide_password=False)


def database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")

    if "://" not in url:
        return dsn_to_url(url)

    parsed = make_url(url)
    if parsed.drivername in ("postgres", "postgresql"):
        parsed = parsed.set(drivername=DRIVER)
    if not parsed.password and os.environ.get("DB_PASSWORD"):
        parsed = parsed.set(password=os.environ["DB_PASSWORD"])
    return parsed.render_as_string(hide_password=False)
