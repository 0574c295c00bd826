"""Domain records shared by the dialogue machine, dispatcher and store."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class DialogueState(str, Enum):
    """Onboarding dialogue states, in order."""

    NONE = "none"
    WELCOME_SENT = "welcome_sent"
    AWAITING_PROJECT_TYPE = "awaiting_project_type"
    AWAITING_LOCATION = "awaiting_location"
    AWAITING_START_DATE = "awaiting_start_date"
    AWAITING_BUDGET = "awaiting_budget"
    CONFIRMATION = "confirmation"
    COMPLETED = "completed"

    @property
    def in_progress(self) -> bool:
        return self not in (DialogueState.NONE, DialogueState.COMPLETED)


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class OnboardingFields:
    """Partial project record collected during onboarding.

    Every field stays optional until confirmation. Persisted as JSON by the
    store; from_dict() is the validation boundary for whatever comes back.
    """

    project_type: str | None = None
    location: str | None = None
    start_date: str | None = None
    budget: Decimal | None = None

    def is_empty(self) -> bool:
        return self == OnboardingFields()

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_type": self.project_type,
            "location": self.location,
            "start_date": self.start_date,
            "budget": str(self.budget) if self.budget is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "OnboardingFields":
        if not data:
            return cls()

        budget = data.get("budget")
        if budget is not None:
            try:
                budget = Decimal(str(budget))
            except InvalidOperation:
                budget = None

        def _text(key: str) -> str | None:
            value = data.get(key)
            return str(value) if value is not None else None

        return cls(
            project_type=_text("project_type"),
            location=_text("location"),
            start_date=_text("start_date"),
            budget=budget,
        )


@dataclass(frozen=True)
class Contact:
    """A sender on the messaging channel plus its dialogue snapshot."""

    id: str
    address: str
    display_name: str | None = None
    default_currency: str = "UGX"
    language: str | None = None
    dialogue_state: DialogueState = DialogueState.NONE
    fields: OnboardingFields = field(default_factory=OnboardingFields)
    completed_at: datetime | None = None
    dialogue_version: int = 0


@dataclass(frozen=True)
class Project:
    id: str
    owner_id: str
    name: str
    description: str | None = None
    budget: Decimal | None = None
    currency: str = "UGX"


@dataclass(frozen=True)
class ProjectRequest:
    owner_id: str
    name: str
    description: str
    budget: Decimal | None = None
    currency: str = "UGX"


@dataclass(frozen=True)
class ExpenseRequest:
    project_id: str
    contact_id: str
    amount: Decimal
    description: str
    category: str
    currency: str = "UGX"
    source_message_id: str | None = None


@dataclass(frozen=True)
class TaskRequest:
    project_id: str
    contact_id: str
    title: str
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: date | None = None


@dataclass(frozen=True)
class ImageRequest:
    project_id: str
    contact_id: str
    url: str
    caption: str | None = None
    expense_id: str | None = None
