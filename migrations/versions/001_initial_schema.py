"""Initial schema (SQL-only).

Revision ID: 001_initial_schema
Revises:
Create Date: 2024-11-04
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _read_sql() -> str:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / "001_initial.sql"
    return sql_path.read_text(encoding="utf-8")


def upgrade() -> None:
    # exec_driver_sql so the DO $$ ... $$ block reaches the server untouched
    op.get_bind().exec_driver_sql(_read_sql())


def downgrade() -> None:
    op.get_bind().exec_driver_sql(
        """
        DROP TABLE IF EXISTS message_audit;
        DROP TABLE IF EXISTS images;
        DROP TABLE IF EXISTS budget_changes;
        DROP TABLE IF EXISTS tasks;
        DROP TABLE IF EXISTS expenses;
        DROP TABLE IF EXISTS projects;
        DROP TABLE IF EXISTS contacts;
        DROP TYPE IF EXISTS dialogue_state;
        """
    )
