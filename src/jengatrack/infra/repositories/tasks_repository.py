"""Tasks repository."""

from datetime import date, datetime

from psycopg2.extensions import cursor as PgCursor


def insert_task(
    cur: PgCursor,
    *,
    project_id: str,
    contact_id: str,
    title: str,
    priority: str,
    due_date: date | None,
    created_at: datetime,
) -> str:
    cur.execute(
        """
        INSERT INTO tasks (project_id, contact_id, title, priority, due_date, created_at)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (project_id, contact_id, title, priority, due_date, created_at),
    )
    return str(cur.fetchone()[0])


def count_pending(cur: PgCursor, *, contact_id: str) -> int:
    cur.execute(
        "SELECT COUNT(*) FROM tasks WHERE contact_id = %s AND status = 'pending'",
        (contact_id,),
    )
    return int(cur.fetchone()[0])
