"""Contacts repository - sender registry and dialogue state.

Dialogue writes are conditional on dialogue_version (optimistic locking):
the UPDATE only applies when the version still equals the one the caller
read, and bumps it. rowcount == 0 means another writer got there first.
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

_CONTACT_COLUMNS = """
    id, address, display_name, default_currency, language,
    dialogue_state, dialogue_fields, dialogue_completed_at, dialogue_version
"""

_KEYS = (
    "id",
    "address",
    "display_name",
    "default_currency",
    "language",
    "dialogue_state",
    "dialogue_fields",
    "dialogue_completed_at",
    "dialogue_version",
)


def _to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    data = dict(zip(_KEYS, row))
    data["id"] = str(data["id"])
    return data


def upsert_contact(
    cur: PgCursor,
    *,
    address: str,
    display_name: str | None,
    default_currency: str,
) -> dict[str, Any]:
    """Return the contact for an address, creating it on first contact.

    An existing display name is kept; a missing one is filled from the
    transport profile.
    """
    cur.execute(
        f"""
        INSERT INTO contacts (address, display_name, default_currency)
        VALUES (%s, %s, %s)
        ON CONFLICT (address) DO UPDATE
            SET display_name = COALESCE(contacts.display_name, EXCLUDED.display_name)
        RETURNING {_CONTACT_COLUMNS}
        """,
        (address, display_name, default_currency),
    )
    return _to_dict(cur.fetchone())


def get_contact(cur: PgCursor, *, contact_id: str) -> dict[str, Any] | None:
    cur.execute(
        f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE id = %s",
        (contact_id,),
    )
    row = cur.fetchone()
    return _to_dict(row) if row else None


def update_dialogue(
    cur: PgCursor,
    *,
    contact_id: str,
    expected_version: int,
    state: str,
    fields: dict[str, Any],
    completed_at: datetime | None,
    updated_at: datetime,
) -> bool:
    """Conditionally write dialogue state. Returns False on version conflict."""
    cur.execute(
        """
        UPDATE contacts
        SET dialogue_state = %s,
            dialogue_fields = %s,
            dialogue_completed_at = %s,
            dialogue_version = dialogue_version + 1,
            updated_at = %s
        WHERE id = %s AND dialogue_version = %s
        """,
        (state, Json(fields), completed_at, updated_at, contact_id, expected_version),
    )
    return cur.rowcount == 1
