"""Projects repository - active project lookup, creation and budget changes."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_KEYS = ("id", "owner_id", "name", "description", "budget", "currency")


def _to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    data = dict(zip(_KEYS, row))
    data["id"] = str(data["id"])
    data["owner_id"] = str(data["owner_id"])
    return data


def get_active_project(cur: PgCursor, *, owner_id: str) -> dict[str, Any] | None:
    """Most recently created active project of a contact."""
    cur.execute(
        """
        SELECT id, owner_id, name, description, budget, currency
        FROM projects
        WHERE owner_id = %s AND status = 'active'
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (owner_id,),
    )
    row = cur.fetchone()
    return _to_dict(row) if row else None


def insert_project(
    cur: PgCursor,
    *,
    owner_id: str,
    name: str,
    description: str,
    budget: Decimal | None,
    currency: str,
) -> dict[str, Any]:
    cur.execute(
        """
        INSERT INTO projects (owner_id, name, description, budget, currency)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id, owner_id, name, description, budget, currency
        """,
        (owner_id, name, description, budget, currency),
    )
    return _to_dict(cur.fetchone())


def set_budget(
    cur: PgCursor,
    *,
    project_id: str,
    contact_id: str,
    budget: Decimal,
    changed_at: datetime,
) -> Decimal | None:
    """Set a project budget and log the change.

    Locks the project row so concurrent changes log a consistent
    previous_budget.

    Returns:
        The budget before the change (None if none was set).
    """
    cur.execute(
        "SELECT budget FROM projects WHERE id = %s FOR UPDATE",
        (project_id,),
    )
    row = cur.fetchone()
    if row is None:
        raise LookupError(f"project {project_id} not found")
    previous = row[0]

    cur.execute(
        "UPDATE projects SET budget = %s, updated_at = %s WHERE id = %s",
        (budget, changed_at, project_id),
    )
    cur.execute(
        """
        INSERT INTO budget_changes (project_id, contact_id, previous_budget, new_budget, created_at)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (project_id, contact_id, previous, budget, changed_at),
    )
    return previous
