"""Persistence contract consumed by the command engine.

The engine depends only on this protocol. PostgresStore (infra.store) is the
production implementation; tests use an in-memory one.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from decimal import Decimal
from typing import Protocol

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


class StoreError(Exception):
    """Any persistence failure. Wraps the driver error as __cause__."""


class DialogueConflictError(Exception):
    """A dialogue update lost the optimistic race twice in a row."""

    def __init__(self, contact_id: str):
        super().__init__("dialogue update conflict")
        self.contact_id = contact_id


class ConversationStore(Protocol):
    """Everything the engine reads or writes during one turn."""

    # Audit log
    def record_inbound(
        self,
        external_id: str,
        sender: str,
        body: str | None,
        attachment_url: str | None,
        received_at: datetime,
    ) -> str | None:
        """Insert the inbound audit row. Returns its id, or None if duplicate."""
        ...

    def get_reply(self, external_id: str) -> str | None:
        """Body of the outbound reply recorded for an inbound message."""
        ...

    def finish_inbound(
        self, audit_id: str, intent: str | None, error: str | None
    ) -> None: ...

    def record_outbound(self, inbound_audit_id: str, body: str | None) -> str: ...

    # Contacts and dialogue
    def get_or_create_contact(
        self, address: str, display_name: str | None, default_currency: str
    ) -> Contact: ...

    def get_contact(self, contact_id: str) -> Contact | None: ...

    def update_dialogue(
        self,
        contact_id: str,
        expected_version: int,
        state: DialogueState,
        fields: OnboardingFields,
        completed_at: datetime | None,
    ) -> bool:
        """Conditional write. False when the version moved since it was read."""
        ...

    # Projects
    def get_active_project(self, contact_id: str) -> Project | None: ...

    def create_project(self, request: ProjectRequest) -> Project: ...

    def update_project_budget(
        self, project_id: str, contact_id: str, budget: Decimal
    ) -> Decimal | None:
        """Set the budget, log the change, return the previous budget."""
        ...

    # Expenses
    def create_expense(self, request: ExpenseRequest) -> str: ...

    def sum_expenses(self, project_id: str, since: datetime | None = None) -> Decimal: ...

    def expense_totals_by_category(self, project_id: str) -> list[tuple[str, Decimal]]:
        """(category, total) pairs, largest total first."""
        ...

    def count_expenses(self, project_id: str) -> int: ...

    # Tasks
    def create_task(self, request: TaskRequest) -> str: ...

    def count_pending_tasks(self, contact_id: str) -> int: ...

    # Images
    def create_image(self, request: ImageRequest) -> str: ...

    def atomic(self) -> AbstractContextManager[None]:
        """Unit of work. Changes inside are discarded if the block raises."""
        ...
