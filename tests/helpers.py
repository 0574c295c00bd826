"""Shared test helpers for JengaTrack tests.

This module contains helpers that can be imported by both conftest.py and
individual test files. These are NOT fixtures - they are regular functions
and classes.
"""

from __future__ import annotations

import copy
import itertools
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator

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
from jengatrack.whatsapp.models import NormalizedInbound

# 2026-03-10 09:00 in Kampala
NOW = datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)

SENDER = "+256772123456"


class FakeStore:
    """In-memory ConversationStore.

    atomic() snapshots all state and restores it when the block raises, like
    a savepoint. Failures are injected by method name through `fail_on`.
    `lost_updates` makes that many update_dialogue calls lose the race: a
    concurrent writer bumps the version (and optionally moves the dialogue to
    `racer_state`) and the call returns False.
    """

    _STATE = (
        "audit",
        "contacts",
        "projects",
        "expenses",
        "tasks",
        "images",
        "budget_changes",
    )

    def __init__(self, now: datetime = NOW):
        self.now = now
        self.audit: list[dict[str, Any]] = []
        self.contacts: dict[str, Contact] = {}
        self.projects: list[Project] = []
        self.expenses: list[dict[str, Any]] = []
        self.tasks: list[dict[str, Any]] = []
        self.images: list[dict[str, Any]] = []
        self.budget_changes: list[dict[str, Any]] = []

        self.fail_on: set[str] = set()
        self.lost_updates = 0
        self.racer_state: DialogueState | None = None
        self.calls: list[str] = []

        self._ids = itertools.count(1)
        # Writes made "by another transaction"; survive our rollbacks
        self._foreign: dict[str, Contact] = {}

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise StoreError(f"{name} failed: injected")

    # ── Unit of work ─────────────────────────────────────────

    @contextmanager
    def atomic(self) -> Iterator[None]:
        snapshot = {key: copy.deepcopy(getattr(self, key)) for key in self._STATE}
        try:
            yield
        except BaseException:
            for key, value in snapshot.items():
                setattr(self, key, value)
            self.contacts.update(self._foreign)
            raise

    # ── Audit ────────────────────────────────────────────────

    def record_inbound(
        self,
        external_id: str,
        sender: str,
        body: str | None,
        attachment_url: str | None,
        received_at: datetime,
    ) -> str | None:
        self._enter("record_inbound")
        if any(
            row["external_id"] == external_id and row["direction"] == "inbound"
            for row in self.audit
        ):
            return None
        audit_id = self._next_id("a")
        self.audit.append(
            {
                "id": audit_id,
                "external_id": external_id,
                "direction": "inbound",
                "sender": sender,
                "body": body,
                "attachment_url": attachment_url,
                "processed": False,
                "intent": None,
                "error": None,
                "reply_to_id": None,
            }
        )
        return audit_id

    def get_reply(self, external_id: str) -> str | None:
        self._enter("get_reply")
        for inbound in self.inbound_rows(external_id):
            for row in self.audit:
                if row["direction"] == "outbound" and row["reply_to_id"] == inbound["id"]:
                    return row["body"]
        return None

    def finish_inbound(self, audit_id: str, intent: str | None, error: str | None) -> None:
        self._enter("finish_inbound")
        row = self._audit_row(audit_id)
        row.update(processed=True, intent=intent, error=error)

    def record_outbound(self, inbound_audit_id: str, body: str | None) -> str:
        self._enter("record_outbound")
        inbound = self._audit_row(inbound_audit_id)
        audit_id = self._next_id("a")
        self.audit.append(
            {
                "id": audit_id,
                "external_id": inbound["external_id"],
                "direction": "outbound",
                "body": body,
                "processed": True,
                "reply_to_id": inbound_audit_id,
            }
        )
        return audit_id

    def _audit_row(self, audit_id: str) -> dict[str, Any]:
        for row in self.audit:
            if row["id"] == audit_id:
                return row
        raise StoreError(f"audit row {audit_id} not found")

    # ── Contacts ─────────────────────────────────────────────

    def get_or_create_contact(
        self, address: str, display_name: str | None, default_currency: str
    ) -> Contact:
        self._enter("get_or_create_contact")
        for contact in self.contacts.values():
            if contact.address == address:
                if contact.display_name is None and display_name:
                    contact = replace(contact, display_name=display_name)
                    self.contacts[contact.id] = contact
                return contact
        contact = Contact(
            id=self._next_id("c"),
            address=address,
            display_name=display_name,
            default_currency=default_currency,
        )
        self.contacts[contact.id] = contact
        return contact

    def get_contact(self, contact_id: str) -> Contact | None:
        self._enter("get_contact")
        return self.contacts.get(contact_id)

    def update_dialogue(
        self,
        contact_id: str,
        expected_version: int,
        state: DialogueState,
        fields: OnboardingFields,
        completed_at: datetime | None,
    ) -> bool:
        self._enter("update_dialogue")
        current = self.contacts[contact_id]

        if self.lost_updates > 0:
            self.lost_updates -= 1
            raced = replace(
                current,
                dialogue_state=self.racer_state or current.dialogue_state,
                dialogue_version=current.dialogue_version + 1,
            )
            self.contacts[contact_id] = raced
            self._foreign[contact_id] = raced
            return False

        if current.dialogue_version != expected_version:
            return False

        self.contacts[contact_id] = replace(
            current,
            dialogue_state=state,
            fields=fields,
            completed_at=completed_at,
            dialogue_version=current.dialogue_version + 1,
        )
        self._foreign.pop(contact_id, None)
        return True

    # ── Projects ─────────────────────────────────────────────

    def get_active_project(self, contact_id: str) -> Project | None:
        self._enter("get_active_project")
        owned = [p for p in self.projects if p.owner_id == contact_id]
        return owned[-1] if owned else None

    def create_project(self, request: ProjectRequest) -> Project:
        self._enter("create_project")
        project = Project(
            id=self._next_id("p"),
            owner_id=request.owner_id,
            name=request.name,
            description=request.description,
            budget=request.budget,
            currency=request.currency,
        )
        self.projects.append(project)
        return project

    def update_project_budget(
        self, project_id: str, contact_id: str, budget: Decimal
    ) -> Decimal | None:
        self._enter("update_project_budget")
        for i, project in enumerate(self.projects):
            if project.id == project_id:
                self.projects[i] = replace(project, budget=budget)
                self.budget_changes.append(
                    {
                        "project_id": project_id,
                        "contact_id": contact_id,
                        "previous_budget": project.budget,
                        "new_budget": budget,
                    }
                )
                return project.budget
        raise StoreError(f"project {project_id} not found")

    # ── Expenses ─────────────────────────────────────────────

    def create_expense(self, request: ExpenseRequest) -> str:
        self._enter("create_expense")
        return self.add_expense(request)

    def add_expense(self, request: ExpenseRequest, created_at: datetime | None = None) -> str:
        """Seed an expense directly (no failure injection)."""
        expense_id = self._next_id("e")
        self.expenses.append(
            {"id": expense_id, "request": request, "created_at": created_at or self.now}
        )
        return expense_id

    def sum_expenses(self, project_id: str, since: datetime | None = None) -> Decimal:
        self._enter("sum_expenses")
        return sum(
            (
                row["request"].amount
                for row in self.expenses
                if row["request"].project_id == project_id
                and (since is None or row["created_at"] >= since)
            ),
            Decimal(0),
        )

    def expense_totals_by_category(self, project_id: str) -> list[tuple[str, Decimal]]:
        self._enter("expense_totals_by_category")
        totals: dict[str, Decimal] = {}
        for row in self.expenses:
            request = row["request"]
            if request.project_id == project_id:
                totals[request.category] = totals.get(request.category, Decimal(0)) + request.amount
        return sorted(totals.items(), key=lambda item: (-item[1], item[0]))

    def count_expenses(self, project_id: str) -> int:
        self._enter("count_expenses")
        return sum(1 for row in self.expenses if row["request"].project_id == project_id)

    # ── Tasks ────────────────────────────────────────────────

    def create_task(self, request: TaskRequest) -> str:
        self._enter("create_task")
        task_id = self._next_id("t")
        self.tasks.append({"id": task_id, "request": request, "status": "pending"})
        return task_id

    def count_pending_tasks(self, contact_id: str) -> int:
        self._enter("count_pending_tasks")
        return sum(
            1
            for row in self.tasks
            if row["request"].contact_id == contact_id and row["status"] == "pending"
        )

    # ── Images ───────────────────────────────────────────────

    def create_image(self, request: ImageRequest) -> str:
        self._enter("create_image")
        image_id = self._next_id("i")
        self.images.append({"id": image_id, "request": request})
        return image_id

    # ── Inspection ───────────────────────────────────────────

    def inbound_rows(self, external_id: str) -> list[dict[str, Any]]:
        return [
            row
            for row in self.audit
            if row["external_id"] == external_id and row["direction"] == "inbound"
        ]

    def outbound_rows(self, external_id: str) -> list[dict[str, Any]]:
        return [
            row
            for row in self.audit
            if row["external_id"] == external_id and row["direction"] == "outbound"
        ]


def seed_contact(
    store: FakeStore,
    address: str = SENDER,
    *,
    state: DialogueState = DialogueState.NONE,
    fields: OnboardingFields | None = None,
    display_name: str | None = None,
) -> Contact:
    contact = store.get_or_create_contact(address, display_name, "UGX")
    contact = replace(contact, dialogue_state=state, fields=fields or OnboardingFields())
    store.contacts[contact.id] = contact
    return contact


def seed_project(
    store: FakeStore,
    contact: Contact,
    budget: Decimal | int | None = 1_000_000,
    name: str = "Residential home - Entebbe",
) -> Project:
    return store.create_project(
        ProjectRequest(
            owner_id=contact.id,
            name=name,
            description="Project created via WhatsApp onboarding",
            budget=Decimal(budget) if budget is not None else None,
            currency="UGX",
        )
    )


_message_ids = itertools.count(1)


def make_inbound(
    body: str | None,
    *,
    message_id: str | None = None,
    sender: str = SENDER,
    display_name: str | None = None,
    attachment_url: str | None = None,
) -> NormalizedInbound:
    """Build a normalized inbound message with a fresh id unless one is given."""
    return NormalizedInbound(
        message_id=message_id or f"SM{next(_message_ids):032d}",
        sender=sender,
        body=body,
        received_at=NOW,
        display_name=display_name,
        attachment_url=attachment_url,
        attachment_count=1 if attachment_url else 0,
    )
