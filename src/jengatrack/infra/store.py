"""PostgreSQL implementation of ConversationStore.

Wraps one cursor (one transaction, see infra.db.txn). Every driver error is
re-raised as StoreError. atomic() maps to a SAVEPOINT so a failed unit of
work rolls back without aborting the surrounding transaction, which keeps
the audit row writable.
"""

import functools
import itertools
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterator, TypeVar

import psycopg2
from psycopg2.extensions import cursor as PgCursor

from jengatrack.domain.models import (
    Contact,
    DialogueState,
    ExpenseRequest,
    ImageRequest,
    OnboardingFields,
    Project,
    ProjectRequest,
    TaskRequest,
)
from jengatrack.domain.store import StoreError
from jengatrack.infra.repositories import (
    audit_repository,
    contacts_repository,
    expenses_repository,
    projects_repository,
    tasks_repository,
)
from jengatrack.infra.time import utc_now

F = TypeVar("F", bound=Callable[..., Any])


def _wrap_errors(func: F) -> F:
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (psycopg2.Error, LookupError) as exc:
            raise StoreError(f"{func.__name__} failed: {type(exc).__name__}") from exc

    return wrapper  # type: ignore[return-value]


def _contact(row: dict[str, Any]) -> Contact:
    return Contact(
        id=row["id"],
        address=row["address"],
        display_name=row["display_name"],
        default_currency=row["default_currency"],
        language=row["language"],
        dialogue_state=DialogueState(row["dialogue_state"]),
        fields=OnboardingFields.from_dict(row["dialogue_fields"]),
        completed_at=row["dialogue_completed_at"],
        dialogue_version=row["dialogue_version"],
    )


def _project(row: dict[str, Any]) -> Project:
    return Project(**row)


class PostgresStore:
    """ConversationStore over a psycopg2 cursor."""

    def __init__(self, cur: PgCursor):
        self._cur = cur
        self._savepoints = itertools.count(1)

    # ── Unit of work ─────────────────────────────────────────

    @contextmanager
    def atomic(self) -> Iterator[None]:
        name = f"sp_{next(self._savepoints)}"
        try:
            self._cur.execute(f"SAVEPOINT {name}")
        except psycopg2.Error as exc:
            raise StoreError("savepoint failed") from exc
        try:
            yield
        except BaseException:
            try:
                self._cur.execute(f"ROLLBACK TO SAVEPOINT {name}")
            except psycopg2.Error as exc:
                raise StoreError("rollback to savepoint failed") from exc
            raise
        else:
            try:
                self._cur.execute(f"RELEASE SAVEPOINT {name}")
            except psycopg2.Error as exc:
                raise StoreError("release savepoint failed") from exc

    # ── Audit ────────────────────────────────────────────────

    @_wrap_errors
    def record_inbound(
        self,
        external_id: str,
        sender: str,
        body: str | None,
        attachment_url: str | None,
        received_at: datetime,
    ) -> str | None:
        return audit_repository.insert_inbound(
            self._cur,
            external_id=external_id,
            sender=sender,
            body=body,
            attachment_url=attachment_url,
            received_at=received_at,
        )

    @_wrap_errors
    def get_reply(self, external_id: str) -> str | None:
        return audit_repository.get_outbound_body(self._cur, external_id=external_id)

    @_wrap_errors
    def finish_inbound(self, audit_id: str, intent: str | None, error: str | None) -> None:
        audit_repository.mark_processed(
            self._cur,
            audit_id=audit_id,
            intent=intent,
            error=error,
            processed_at=utc_now(),
        )

    @_wrap_errors
    def record_outbound(self, inbound_audit_id: str, body: str | None) -> str:
        return audit_repository.insert_outbound(
            self._cur, inbound_audit_id=inbound_audit_id, body=body, sent_at=utc_now()
        )

    # ── Contacts ─────────────────────────────────────────────

    @_wrap_errors
    def get_or_create_contact(
        self, address: str, display_name: str | None, default_currency: str
    ) -> Contact:
        row = contacts_repository.upsert_contact(
            self._cur,
            address=address,
            display_name=display_name,
            default_currency=default_currency,
        )
        return _contact(row)

    @_wrap_errors
    def get_contact(self, contact_id: str) -> Contact | None:
        row = contacts_repository.get_contact(self._cur, contact_id=contact_id)
        return _contact(row) if row else None

    @_wrap_errors
    def update_dialogue(
        self,
        contact_id: str,
        expected_version: int,
        state: DialogueState,
        fields: OnboardingFields,
        completed_at: datetime | None,
    ) -> bool:
        return contacts_repository.update_dialogue(
            self._cur,
            contact_id=contact_id,
            expected_version=expected_version,
            state=state.value,
            fields=fields.to_dict(),
            completed_at=completed_at,
            updated_at=utc_now(),
        )

    # ── Projects ─────────────────────────────────────────────

    @_wrap_errors
    def get_active_project(self, contact_id: str) -> Project | None:
        row = projects_repository.get_active_project(self._cur, owner_id=contact_id)
        return _project(row) if row else None

    @_wrap_errors
    def create_project(self, request: ProjectRequest) -> Project:
        row = projects_repository.insert_project(
            self._cur,
            owner_id=request.owner_id,
            name=request.name,
            description=request.description,
            budget=request.budget,
            currency=request.currency,
        )
        return _project(row)

    @_wrap_errors
    def update_project_budget(
        self, project_id: str, contact_id: str, budget: Decimal
    ) -> Decimal | None:
        return projects_repository.set_budget(
            self._cur,
            project_id=project_id,
            contact_id=contact_id,
            budget=budget,
            changed_at=utc_now(),
        )

    # ── Expenses ─────────────────────────────────────────────

    @_wrap_errors
    def create_expense(self, request: ExpenseRequest) -> str:
        return expenses_repository.insert_expense(
            self._cur,
            project_id=request.project_id,
            contact_id=request.contact_id,
            amount=request.amount,
            currency=request.currency,
            description=request.description,
            category=request.category,
            source_message_id=request.source_message_id,
            created_at=utc_now(),
        )

    @_wrap_errors
    def sum_expenses(self, project_id: str, since: datetime | None = None) -> Decimal:
        return expenses_repository.sum_expenses(self._cur, project_id=project_id, since=since)

    @_wrap_errors
    def expense_totals_by_category(self, project_id: str) -> list[tuple[str, Decimal]]:
        return expenses_repository.totals_by_category(self._cur, project_id=project_id)

    @_wrap_errors
    def count_expenses(self, project_id: str) -> int:
        return expenses_repository.count_expenses(self._cur, project_id=project_id)

    # ── Tasks ────────────────────────────────────────────────

    @_wrap_errors
    def create_task(self, request: TaskRequest) -> str:
        return tasks_repository.insert_task(
            self._cur,
            project_id=request.project_id,
            contact_id=request.contact_id,
            title=request.title,
            priority=request.priority.value,
            due_date=request.due_date,
            created_at=utc_now(),
        )

    @_wrap_errors
    def count_pending_tasks(self, contact_id: str) -> int:
        return tasks_repository.count_pending(self._cur, contact_id=contact_id)

    # ── Images ───────────────────────────────────────────────

    @_wrap_errors
    def create_image(self, request: ImageRequest) -> str:
        return expenses_repository.insert_image(
            self._cur,
            project_id=request.project_id,
            contact_id=request.contact_id,
            url=request.url,
            caption=request.caption,
            expense_id=request.expense_id,
            created_at=utc_now(),
        )
