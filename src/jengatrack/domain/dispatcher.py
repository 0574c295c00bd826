"""Command dispatcher: one handler per intent.

Handlers never raise for business conditions. Every path ends in a
DispatchResult whose outcome the reply composer knows how to render.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from jengatrack.domain.intents import ClassificationResult, Intent
from jengatrack.domain.models import (
    Contact,
    ExpenseRequest,
    ImageRequest,
    Project,
    TaskPriority,
    TaskRequest,
)
from jengatrack.domain.rules import EngineConfig, categorize
from jengatrack.domain.store import ConversationStore, StoreError
from jengatrack.infra.time import local_day_start
from jengatrack.observability.logging import get_logger
from jengatrack.observability.redaction import safe_log_context

logger = get_logger(__name__)

IMAGE_EXPENSE_DESCRIPTION = "Photo expense"


class Outcome(str, Enum):
    EXPENSE_LOGGED = "expense_logged"
    TASK_CREATED = "task_created"
    BUDGET_SET = "budget_set"
    EXPENSE_SUMMARY = "expense_summary"
    IMAGE_LOGGED = "image_logged"
    UNKNOWN = "unknown"
    NO_ACTIVE_PROJECT = "no_active_project"
    VALIDATION_FAILED = "validation_failed"
    MALFORMED_INPUT = "malformed_input"
    PERSISTENCE_FAILED = "persistence_failed"


@dataclass(frozen=True)
class DispatchResult:
    """What a handler did, with the numbers the reply needs."""

    outcome: Outcome
    intent: Intent
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class _Context:
    store: ConversationStore
    contact: Contact
    project: Project
    result: ClassificationResult
    config: EngineConfig
    now: datetime
    message_id: str | None


@dataclass(frozen=True)
class BudgetStatus:
    budget: Decimal | None
    spent: Decimal
    remaining: Decimal | None
    percent_used: Decimal | None
    warning: bool
    over_budget: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "budget": self.budget,
            "spent": self.spent,
            "remaining": self.remaining,
            "percent_used": self.percent_used,
            "warning": self.warning,
            "over_budget": self.over_budget,
        }


def budget_status(budget: Decimal | None, spent: Decimal, warning_ratio: Decimal) -> BudgetStatus:
    """Remaining balance and warning flags for a project.

    Without a positive budget there is nothing to compare against, so
    remaining is None and no warning is raised.
    """
    if budget is None or budget <= 0:
        return BudgetStatus(budget, spent, None, None, False, False)

    remaining = budget - spent
    return BudgetStatus(
        budget=budget,
        spent=spent,
        remaining=remaining,
        percent_used=spent * 100 / budget,
        warning=spent >= budget * warning_ratio,
        over_budget=spent > budget,
    )


# Required extracted fields per intent
_REQUIRED_FIELDS: dict[Intent, tuple[str, ...]] = {
    Intent.LOG_EXPENSE: ("amount", "description"),
    Intent.CREATE_TASK: ("title",),
    Intent.SET_BUDGET: ("amount",),
    Intent.QUERY_EXPENSES: (),
    Intent.LOG_IMAGE: ("attachment_url",),
}


def _handle_expense(ctx: _Context) -> DispatchResult:
    fields = ctx.result.fields
    amount = fields.amount
    category = fields.category_hint or categorize(
        fields.description, ctx.config.category_table
    )
    currency = fields.currency or ctx.contact.default_currency

    prior = ctx.store.sum_expenses(ctx.project.id)
    expense_id = ctx.store.create_expense(
        ExpenseRequest(
            project_id=ctx.project.id,
            contact_id=ctx.contact.id,
            amount=amount,
            description=fields.description,
            category=category,
            currency=currency,
            source_message_id=ctx.message_id,
        )
    )
    today_total = ctx.store.sum_expenses(
        ctx.project.id, since=local_day_start(ctx.now, ctx.config.timezone)
    )
    status = budget_status(ctx.project.budget, prior + amount, ctx.config.budget_warning_ratio)

    logger.info(
        "expense logged",
        extra={
            "extra_fields": safe_log_context(
                expense_id=expense_id,
                category=category,
                warning=status.warning,
            )
        },
    )

    return DispatchResult(
        outcome=Outcome.EXPENSE_LOGGED,
        intent=ctx.result.intent,
        data={
            "expense_id": expense_id,
            "amount": amount,
            "currency": currency,
            "description": fields.description,
            "category": category,
            "today_total": today_total,
            **status.as_dict(),
        },
    )


def _handle_task(ctx: _Context) -> DispatchResult:
    fields = ctx.result.fields
    priority = TaskPriority.HIGH if fields.urgent else TaskPriority.MEDIUM

    task_id = ctx.store.create_task(
        TaskRequest(
            project_id=ctx.project.id,
            contact_id=ctx.contact.id,
            title=fields.title,
            priority=priority,
            due_date=fields.due_date,
        )
    )
    pending = ctx.store.count_pending_tasks(ctx.contact.id)

    logger.info(
        "task created",
        extra={"extra_fields": safe_log_context(task_id=task_id, priority=priority)},
    )

    return DispatchResult(
        outcome=Outcome.TASK_CREATED,
        intent=ctx.result.intent,
        data={
            "task_id": task_id,
            "title": fields.title,
            "priority": priority,
            "due_date": fields.due_date,
            "pending_count": pending,
        },
    )


def _handle_budget(ctx: _Context) -> DispatchResult:
    new_budget = ctx.result.fields.amount

    previous = ctx.store.update_project_budget(ctx.project.id, ctx.contact.id, new_budget)
    spent = ctx.store.sum_expenses(ctx.project.id)
    status = budget_status(new_budget, spent, ctx.config.budget_warning_ratio)

    logger.info(
        "budget set",
        extra={"extra_fields": safe_log_context(project_id=ctx.project.id)},
    )

    return DispatchResult(
        outcome=Outcome.BUDGET_SET,
        intent=ctx.result.intent,
        data={
            "previous_budget": previous,
            "currency": ctx.project.currency,
            **status.as_dict(),
        },
    )


def _handle_query(ctx: _Context) -> DispatchResult:
    project_id = ctx.project.id
    spent = ctx.store.sum_expenses(project_id)
    count = ctx.store.count_expenses(project_id)
    top = ctx.store.expense_totals_by_category(project_id)[:3]
    status = budget_status(ctx.project.budget, spent, ctx.config.budget_warning_ratio)

    return DispatchResult(
        outcome=Outcome.EXPENSE_SUMMARY,
        intent=ctx.result.intent,
        data={
            "project_name": ctx.project.name,
            "currency": ctx.project.currency,
            "expense_count": count,
            "top_categories": top,
            **status.as_dict(),
        },
    )


def _handle_image(ctx: _Context) -> DispatchResult:
    fields = ctx.result.fields
    expense_data: dict[str, Any] | None = None
    expense_id = None

    if fields.amount is not None:
        description = fields.description or fields.caption or IMAGE_EXPENSE_DESCRIPTION
        category = fields.category_hint or categorize(
            description, ctx.config.category_table
        )
        currency = fields.currency or ctx.contact.default_currency
        expense_id = ctx.store.create_expense(
            ExpenseRequest(
                project_id=ctx.project.id,
                contact_id=ctx.contact.id,
                amount=fields.amount,
                description=description,
                category=category,
                currency=currency,
                source_message_id=ctx.message_id,
            )
        )
        expense_data = {
            "expense_id": expense_id,
            "amount": fields.amount,
            "currency": currency,
            "description": description,
            "category": category,
        }

    image_id = ctx.store.create_image(
        ImageRequest(
            project_id=ctx.project.id,
            contact_id=ctx.contact.id,
            url=fields.attachment_url,
            caption=fields.caption,
            expense_id=expense_id,
        )
    )

    logger.info(
        "image logged",
        extra={
            "extra_fields": safe_log_context(
                image_id=image_id, linked_expense=expense_id is not None
            )
        },
    )

    return DispatchResult(
        outcome=Outcome.IMAGE_LOGGED,
        intent=ctx.result.intent,
        data={"image_id": image_id, "caption": fields.caption, "expense": expense_data},
    )


Handler = Callable[[_Context], DispatchResult]

HANDLERS: dict[Intent, Handler] = {
    Intent.LOG_EXPENSE: _handle_expense,
    Intent.CREATE_TASK: _handle_task,
    Intent.SET_BUDGET: _handle_budget,
    Intent.QUERY_EXPENSES: _handle_query,
    Intent.LOG_IMAGE: _handle_image,
}

# Every actionable intent must have a handler and a required-field entry
_UNHANDLED = (set(Intent) - {Intent.UNKNOWN}) ^ set(HANDLERS)
if _UNHANDLED or set(HANDLERS) != set(_REQUIRED_FIELDS):
    raise RuntimeError(f"dispatcher table out of sync: {sorted(i.value for i in _UNHANDLED)}")


def dispatch(
    store: ConversationStore,
    contact: Contact,
    result: ClassificationResult,
    config: EngineConfig,
    *,
    now: datetime,
    message_id: str | None = None,
) -> DispatchResult:
    """Run the handler for a classified message.

    Order of checks: unknown, malformed fields, missing fields, active
    project. Only then is anything written, inside store.atomic() so a
    failure leaves nothing half-done.
    """
    if result.intent == Intent.UNKNOWN:
        return DispatchResult(outcome=Outcome.UNKNOWN, intent=result.intent)

    fields = result.fields
    if fields.malformed:
        return DispatchResult(
            outcome=Outcome.MALFORMED_INPUT,
            intent=result.intent,
            data={"field": fields.malformed[0]},
        )

    for name in _REQUIRED_FIELDS[result.intent]:
        if getattr(fields, name) in (None, ""):
            return DispatchResult(
                outcome=Outcome.VALIDATION_FAILED,
                intent=result.intent,
                data={"field": name},
            )

    handler = HANDLERS[result.intent]
    try:
        with store.atomic():
            project = store.get_active_project(contact.id)
            if project is None:
                return DispatchResult(
                    outcome=Outcome.NO_ACTIVE_PROJECT, intent=result.intent
                )
            return handler(
                _Context(
                    store=store,
                    contact=contact,
                    project=project,
                    result=result,
                    config=config,
                    now=now,
                    message_id=message_id,
                )
            )
    except StoreError as exc:
        logger.error(
            "command persistence failed",
            exc_info=True,
            extra={
                "extra_fields": safe_log_context(
                    intent=result.intent, contact_id=contact.id
                )
            },
        )
        return DispatchResult(
            outcome=Outcome.PERSISTENCE_FAILED,
            intent=result.intent,
            error=f"{type(exc).__name__}: {exc}",
        )
