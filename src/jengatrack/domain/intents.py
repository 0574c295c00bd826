"""Classification result models.

NO raw text stored beyond the extracted fields the handlers need.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum


class Intent(str, Enum):
    """Closed set of things a message can ask for."""

    LOG_EXPENSE = "log_expense"
    CREATE_TASK = "create_task"
    SET_BUDGET = "set_budget"
    QUERY_EXPENSES = "query_expenses"
    LOG_IMAGE = "log_image"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ExtractedFields:
    """Typed fields pulled out of a message.

    Which fields are populated depends on the intent; everything is optional
    here and required fields are checked by the dispatcher.
    """

    amount: Decimal | None = None
    description: str | None = None
    title: str | None = None
    due_date: date | None = None
    category_hint: str | None = None
    currency: str | None = None
    attachment_url: str | None = None
    caption: str | None = None
    urgent: bool = False
    # Field names whose pattern matched but whose value could not be parsed
    malformed: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassificationResult:
    """Result of classifying one message. Ephemeral, never persisted."""

    intent: Intent
    confidence: float
    fields: ExtractedFields = field(default_factory=ExtractedFields)
    language: str | None = None
    rule: str | None = None

    def is_unknown(self) -> bool:
        return self.intent is Intent.UNKNOWN


UNKNOWN_RESULT = ClassificationResult(intent=Intent.UNKNOWN, confidence=0.0)
