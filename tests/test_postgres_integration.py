"""End-to-end turns against a real PostgreSQL (skipped without DATABASE_URL).

The schema is applied inside the test transaction and everything is rolled
back afterwards.
"""

import os
from decimal import Decimal
from pathlib import Path

import pytest

from jengatrack.domain.models import DialogueState
from jengatrack.infra.db import get_conn
from jengatrack.infra.store import PostgresStore
from jengatrack.services.command_engine import process_inbound

from .helpers import NOW, make_inbound

pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)

SCHEMA = Path(__file__).resolve().parents[1] / "migrations" / "sql" / "001_initial.sql"


@pytest.fixture
def pg_store():
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(SCHEMA.read_text(encoding="utf-8"))
            yield PostgresStore(cur)
    finally:
        conn.rollback()
        conn.close()


def _send(store, config, body, message_id):
    return process_inbound(store, make_inbound(body, message_id=message_id), config, now=NOW)


class TestPostgresTurns:
    def test_onboarding_then_expense(self, pg_store, config):
        for i, text in enumerate(("hey jengatrack", "1", "Entebbe", "skip", "1M", "yes")):
            _send(pg_store, config, text, f"SMit{i}")

        reply = _send(pg_store, config, "spent 50000 on cement", "SMit-exp")

        assert "UGX 50,000 for cement (Materials)" in reply.text
        assert "Remaining budget: UGX 950,000" in reply.text

        contact = pg_store.get_or_create_contact(make_inbound("").sender, None, "UGX")
        assert contact.dialogue_state == DialogueState.COMPLETED
        project = pg_store.get_active_project(contact.id)
        assert project.budget == Decimal("1000000")

    def test_duplicate_replays(self, pg_store, config):
        first = _send(pg_store, config, "hello", "SMit-dup")
        second = _send(pg_store, config, "hello", "SMit-dup")

        assert second.duplicate is True
        assert second.text == first.text

    def test_failure_keeps_audit_row(self, pg_store, config):
        for i, text in enumerate(("start", "1", "Gulu", "skip", "skip", "yes")):
            _send(pg_store, config, text, f"SMit-f{i}")

        # NUMERIC(14,2) overflows, the savepoint rolls back the turn only
        reply = _send(pg_store, config, "spent 999999999999999 on cement", "SMit-big")

        assert reply.error is not None
        assert pg_store.get_reply("SMit-big") == reply.text
