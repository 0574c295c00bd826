"""Expenses and images repository.

Aggregates return Decimal; an empty project sums to 0.
"""

from datetime import datetime
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor


def insert_expense(
    cur: PgCursor,
    *,
    project_id: str,
    contact_id: str,
    amount: Decimal,
    currency: str,
    description: str,
    category: str,
    source_message_id: str | None,
    created_at: datetime,
) -> str:
    cur.execute(
        """
        INSERT INTO expenses
            (project_id, contact_id, amount, currency, description, category,
             source_message_id, created_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            project_id,
            contact_id,
            amount,
            currency,
            description,
            category,
            source_message_id,
            created_at,
        ),
    )
    return str(cur.fetchone()[0])


def sum_expenses(
    cur: PgCursor, *, project_id: str, since: datetime | None = None
) -> Decimal:
    if since is None:
        cur.execute(
            "SELECT COALESCE(SUM(amount), 0) FROM expenses WHERE project_id = %s",
            (project_id,),
        )
    else:
        cur.execute(
            """
            SELECT COALESCE(SUM(amount), 0) FROM expenses
            WHERE project_id = %s AND created_at >= %s
            """,
            (project_id, since),
        )
    return Decimal(cur.fetchone()[0])


def totals_by_category(cur: PgCursor, *, project_id: str) -> list[tuple[str, Decimal]]:
    cur.execute(
        """
        SELECT category, SUM(amount) AS total
        FROM expenses
        WHERE project_id = %s
        GROUP BY category
        ORDER BY total DESC, category
        """,
        (project_id,),
    )
    return [(row[0], Decimal(row[1])) for row in cur.fetchall()]


def count_expenses(cur: PgCursor, *, project_id: str) -> int:
    cur.execute("SELECT COUNT(*) FROM expenses WHERE project_id = %s", (project_id,))
    return int(cur.fetchone()[0])


def insert_image(
    cur: PgCursor,
    *,
    project_id: str,
    contact_id: str,
    url: str,
    caption: str | None,
    expense_id: str | None,
    created_at: datetime,
) -> str:
    cur.execute(
        """
        INSERT INTO images
            (project_id, contact_id, url, caption, expense_id, created_at)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (project_id, contact_id, url, caption, expense_id, created_at),
    )
    return str(cur.fetchone()[0])
