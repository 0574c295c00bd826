"""Message audit repository - idempotency and audit trail.

Uses raw SQL with psycopg2 (no ORM).

Dedupe relies on the unique (external_id, direction) constraint:
INSERT ... ON CONFLICT DO NOTHING RETURNING id yields no row when the
message was already recorded. A concurrent insert of the same id blocks on
the constraint until the first transaction finishes, then conflicts.
"""

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor


def insert_inbound(
    cur: PgCursor,
    *,
    external_id: str,
    sender: str,
    body: str | None,
    attachment_url: str | None,
    received_at: datetime,
) -> str | None:
    """Insert the inbound audit row.

    Returns:
        Audit row id, or None if this external id was already recorded.
    """
    cur.execute(
        """
        INSERT INTO message_audit
            (external_id, direction, sender, body, attachment_url, received_at)
        VALUES (%s, 'inbound', %s, %s, %s, %s)
        ON CONFLICT (external_id, direction) DO NOTHING
        RETURNING id
        """,
        (external_id, sender, body, attachment_url, received_at),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None


def get_outbound_body(cur: PgCursor, *, external_id: str) -> str | None:
    """Reply recorded for an inbound external id, or None if none exists yet."""
    cur.execute(
        """
        SELECT o.body
        FROM message_audit i
        JOIN message_audit o ON o.reply_to_id = i.id AND o.direction = 'outbound'
        WHERE i.external_id = %s AND i.direction = 'inbound'
        """,
        (external_id,),
    )
    row = cur.fetchone()
    return row[0] if row else None


def mark_processed(
    cur: PgCursor,
    *,
    audit_id: str,
    intent: str | None,
    error: str | None,
    processed_at: datetime,
) -> None:
    cur.execute(
        """
        UPDATE message_audit
        SET processed = true, detected_intent = %s, error = %s, processed_at = %s
        WHERE id = %s
        """,
        (intent, error, processed_at, audit_id),
    )


def insert_outbound(
    cur: PgCursor,
    *,
    inbound_audit_id: str,
    body: str | None,
    sent_at: datetime,
) -> str:
    """Insert the reply row, keyed by the inbound row's external id."""
    cur.execute(
        """
        INSERT INTO message_audit
            (external_id, direction, reply_to_id, body, processed, received_at, processed_at)
        SELECT external_id, 'outbound', id, %s, true, %s, %s
        FROM message_audit
        WHERE id = %s
        RETURNING id
        """,
        (body, sent_at, sent_at, inbound_audit_id),
    )
    return str(cur.fetchone()[0])
