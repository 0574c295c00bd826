"""PostgreSQL connections via psycopg2.

One inbound message is handled inside one txn(); see infra.store for the
ConversationStore built on its cursor.
"""

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor
from psycopg2.extensions import parse_dsn


def get_conn() -> PgConnection:
    """Open a connection from DATABASE_URL.

    DATABASE_URL may be a URL or a libpq key=value DSN. When it carries no
    password and DB_PASSWORD is set, that password is passed separately so
    the secret never has to live in the DSN.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not parse_dsn(dsn).get("password"):
        return psycopg2.connect(dsn, password=db_password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Yield a cursor; commit on clean exit, roll back on any exception.

    A connection opened here (conn is None) is also closed here.
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
