"""WhatsApp reply templates and the reply composer.

Templates contain static text with placeholders. The composer only formats:
numbers arrive already computed in DispatchResult / Prompt params. Rendering
never raises to the caller; a broken template degrades to the apology text.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from jengatrack.domain.dispatcher import DispatchResult, Outcome
from jengatrack.domain.onboarding import Prompt, PromptKey
from jengatrack.domain.rules import EngineConfig
from jengatrack.observability.logging import get_logger
from jengatrack.observability.redaction import safe_log_context

logger = get_logger(__name__)

APOLOGY_TEXT = "Sorry, something went wrong on our side. Please try again in a moment."

TEMPLATES: dict[str, dict[str, Any]] = {
    "help": {
        "text": (
            "I didn't quite understand that.\n\n"
            "Here's what I can help with:\n\n"
            "*Log expenses:*\n"
            '"spent 500000 on cement"\n'
            '"paid 200000 for bricks"\n'
            '"nimaze 300 ku sand" (Luganda)\n\n'
            "*Create tasks:*\n"
            '"task: inspect foundation"\n'
            '"todo: buy materials"\n\n'
            "*Set budget:*\n"
            '"set budget 5000000"\n\n'
            "*Check expenses:*\n"
            '"how much did I spend?"\n'
            '"ssente zmeka" (Luganda)\n\n'
            "Need more? Visit {dashboard_url}"
        ),
        "allowed_params": ["dashboard_url"],
    },
    "apology": {"text": APOLOGY_TEXT, "allowed_params": []},
    "no_active_project": {
        "text": (
            "You don't have an active project yet. "
            'Send "start" to set one up, then try again.'
        ),
        "allowed_params": [],
    },
    "missing_amount": {
        "text": 'I couldn\'t find an amount. Try: "spent 50000 on cement".',
        "allowed_params": [],
    },
    "missing_description": {
        "text": 'What was it for? Try: "spent 50000 on cement".',
        "allowed_params": [],
    },
    "missing_title": {
        "text": 'What is the task? Try: "task: inspect foundation".',
        "allowed_params": [],
    },
    "missing_attachment_url": {
        "text": "I couldn't read the attachment. Please send the photo again.",
        "allowed_params": [],
    },
    "malformed_amount": {
        "text": "I couldn't read that amount. Use digits like 50000, 50k or 1.5M.",
        "allowed_params": [],
    },
    "malformed_due_date": {
        "text": 'That due date doesn\'t exist. Try "by 15/03" or "by friday".',
        "allowed_params": [],
    },
    "expense_logged": {
        "text": (
            "✅ Expense logged: {amount} for {description} ({category})\n"
            "Today's total: {today_total}"
        ),
        "allowed_params": ["amount", "description", "category", "today_total"],
    },
    "budget_line": {
        "text": "Remaining budget: {remaining} ({percent_used} used)",
        "allowed_params": ["remaining", "percent_used"],
    },
    "budget_warning": {
        "text": "⚠️ You have used {percent_used} of your budget.",
        "allowed_params": ["percent_used"],
    },
    "over_budget": {
        "text": "🚨 You are over budget by {overrun}.",
        "allowed_params": ["overrun"],
    },
    "task_created": {
        "text": (
            "✅ Task created: {title}{due}\n"
            "Priority: {priority}\n"
            "Pending tasks: {pending_count}"
        ),
        "allowed_params": ["title", "due", "priority", "pending_count"],
    },
    "budget_set": {
        "text": (
            "✅ Budget set to {budget}\n"
            "Previous budget: {previous_budget}\n"
            "Already spent: {spent}\n"
            "Remaining: {remaining}"
        ),
        "allowed_params": ["budget", "previous_budget", "spent", "remaining"],
    },
    "expense_summary": {
        "text": (
            "📊 {project_name}\n"
            "Budget: {budget}\n"
            "Spent: {spent}{percent}\n"
            "Remaining: {remaining}\n"
            "Expenses logged: {expense_count}"
        ),
        "allowed_params": [
            "project_name",
            "budget",
            "spent",
            "percent",
            "remaining",
            "expense_count",
        ],
    },
    "image_logged": {
        "text": "📷 Photo saved{caption}.",
        "allowed_params": ["caption"],
    },
    "image_expense": {
        "text": "Expense logged: {amount} for {description} ({category})",
        "allowed_params": ["amount", "description", "category"],
    },
    PromptKey.WELCOME.value: {
        "text": (
            "{greeting} Welcome to {product_name} 🚀\n\n"
            "Ready to create your first project?\n\n"
            "What kind of project is this?\n"
            "{choices}\n\n"
            'Reply with a number, or "skip".'
        ),
        "allowed_params": ["greeting", "product_name", "choices"],
    },
    PromptKey.ASK_PROJECT_TYPE.value: {
        "text": "What kind of project is this?\n{choices}\n\nReply with a number.",
        "allowed_params": ["choices"],
    },
    PromptKey.ASK_LOCATION.value: {
        "text": (
            "Cool! Where's the site? (e.g. Kampala Road, Entebbe, or a plot number)\n\n"
            'Just type it, or reply "skip".'
        ),
        "allowed_params": [],
    },
    PromptKey.ASK_START_DATE.value: {
        "text": 'Nice! Rough start date? (e.g. Today, 15 Feb 2026, or "skip")',
        "allowed_params": [],
    },
    PromptKey.ASK_BUDGET.value: {
        "text": (
            "Almost done! Any rough total budget? "
            '({currency}, e.g. 150,000,000 or "skip")\n\n'
            "This sets up your budget tracker right away."
        ),
        "allowed_params": ["currency"],
    },
    PromptKey.CONFIRM_SUMMARY.value: {
        "text": (
            "Here's your project:\n"
            "• Type: {project_type}\n"
            "• Location: {location}\n"
            "• Start: {start_date}\n"
            "• Budget: {budget}\n\n"
            "Reply 1 to confirm, 2 to edit, 3 to skip for now."
        ),
        "allowed_params": ["project_type", "location", "start_date", "budget"],
    },
    PromptKey.PROJECT_CREATED.value: {
        "text": (
            "Project created! 🎉 {project_name} is ready.\n"
            "Your dashboard: {dashboard_url}\n\n"
            'Start logging: "spent 50000 on cement"'
        ),
        "allowed_params": ["project_name", "dashboard_url"],
    },
    PromptKey.PROJECT_FAILED.value: {
        "text": (
            "Sorry, I couldn't create your project just now. "
            'Reply "yes" to try again or "edit" to start over.'
        ),
        "allowed_params": [],
    },
    PromptKey.SKIPPED.value: {
        "text": (
            'No problem. Send "start" whenever you\'re ready to set up a project, '
            "or manage everything at {dashboard_url}"
        ),
        "allowed_params": ["dashboard_url"],
    },
}

_NOT_SET = "not set"


def render(template_key: str, params: dict[str, Any]) -> str:
    """Render template with params. Validates allowed_params.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    template = TEMPLATES[template_key]
    extras = set(params.keys()) - set(template["allowed_params"])
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    return template["text"].format(**params)


def format_money(amount: Decimal | int | None, currency: str) -> str:
    """Currency with thousands separators: UGX 1,250,000 or UGX 1,250.50."""
    if amount is None:
        return _NOT_SET
    value = Decimal(amount)
    if value == value.to_integral_value():
        return f"{currency} {value:,.0f}"
    return f"{currency} {value:,.2f}"


def format_percent(value: Decimal | None) -> str:
    if value is None:
        return "n/a"
    rounded = Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"{rounded}%"


def _choices(project_types: tuple[str, ...]) -> str:
    return "\n".join(f"{i}. {name}" for i, name in enumerate(project_types, start=1))


def _budget_lines(data: dict[str, Any], currency: str) -> list[str]:
    lines = []
    if data.get("remaining") is not None:
        lines.append(
            render(
                "budget_line",
                {
                    "remaining": format_money(data["remaining"], currency),
                    "percent_used": format_percent(data.get("percent_used")),
                },
            )
        )
    if data.get("over_budget"):
        lines.append(
            render(
                "over_budget",
                {"overrun": format_money(-data["remaining"], currency)},
            )
        )
    elif data.get("warning"):
        lines.append(
            render("budget_warning", {"percent_used": format_percent(data.get("percent_used"))})
        )
    return lines


def _expense_logged(data: dict[str, Any], config: EngineConfig) -> str:
    currency = data.get("currency") or config.default_currency
    lines = [
        render(
            "expense_logged",
            {
                "amount": format_money(data["amount"], currency),
                "description": data["description"],
                "category": data["category"],
                "today_total": format_money(data.get("today_total"), currency),
            },
        )
    ]
    lines.extend(_budget_lines(data, currency))
    return "\n".join(lines)


def _task_created(data: dict[str, Any], config: EngineConfig) -> str:
    due = data.get("due_date")
    return render(
        "task_created",
        {
            "title": data["title"],
            "due": f" (due {due:%d %b %Y})" if due else "",
            "priority": str(getattr(data["priority"], "value", data["priority"])),
            "pending_count": data["pending_count"],
        },
    )


def _budget_set(data: dict[str, Any], config: EngineConfig) -> str:
    currency = data.get("currency") or config.default_currency
    text = render(
        "budget_set",
        {
            "budget": format_money(data["budget"], currency),
            "previous_budget": format_money(data.get("previous_budget"), currency),
            "spent": format_money(data["spent"], currency),
            "remaining": format_money(data.get("remaining"), currency),
        },
    )
    if data.get("over_budget"):
        text += "\n" + render(
            "over_budget", {"overrun": format_money(-data["remaining"], currency)}
        )
    elif data.get("warning"):
        text += "\n" + render(
            "budget_warning", {"percent_used": format_percent(data.get("percent_used"))}
        )
    return text


def _expense_summary(data: dict[str, Any], config: EngineConfig) -> str:
    currency = data.get("currency") or config.default_currency
    percent = data.get("percent_used")
    lines = [
        render(
            "expense_summary",
            {
                "project_name": data["project_name"],
                "budget": format_money(data.get("budget"), currency),
                "spent": format_money(data["spent"], currency),
                "percent": f" ({format_percent(percent)})" if percent is not None else "",
                "remaining": format_money(data.get("remaining"), currency),
                "expense_count": data["expense_count"],
            },
        )
    ]

    top = data.get("top_categories") or []
    if top:
        lines.append("\nTop categories:")
        for i, (category, total) in enumerate(top, start=1):
            lines.append(f"{i}. {category}: {format_money(total, currency)}")
    else:
        lines.append("\nNo expenses logged yet.")

    if data.get("over_budget"):
        lines.append(
            render("over_budget", {"overrun": format_money(-data["remaining"], currency)})
        )
    elif data.get("warning"):
        lines.append(render("budget_warning", {"percent_used": format_percent(percent)}))
    return "\n".join(lines)


def _image_logged(data: dict[str, Any], config: EngineConfig) -> str:
    caption = data.get("caption")
    text = render("image_logged", {"caption": f": {caption}" if caption else ""})
    expense = data.get("expense")
    if expense:
        currency = expense.get("currency") or config.default_currency
        text += "\n" + render(
            "image_expense",
            {
                "amount": format_money(expense["amount"], currency),
                "description": expense["description"],
                "category": expense["category"],
            },
        )
    return text


_SUCCESS_RENDERERS = {
    Outcome.EXPENSE_LOGGED: _expense_logged,
    Outcome.TASK_CREATED: _task_created,
    Outcome.BUDGET_SET: _budget_set,
    Outcome.EXPENSE_SUMMARY: _expense_summary,
    Outcome.IMAGE_LOGGED: _image_logged,
}


def help_text(config: EngineConfig) -> str:
    return render("help", {"dashboard_url": config.dashboard_url})


def compose_reply(result: DispatchResult, config: EngineConfig) -> str:
    """Render a dispatch outcome. Never raises."""
    try:
        outcome = result.outcome
        if outcome in _SUCCESS_RENDERERS:
            return _SUCCESS_RENDERERS[outcome](result.data, config)
        if outcome == Outcome.UNKNOWN:
            return help_text(config)
        if outcome == Outcome.NO_ACTIVE_PROJECT:
            return render("no_active_project", {})
        if outcome == Outcome.VALIDATION_FAILED:
            return render(f"missing_{result.data.get('field')}", {})
        if outcome == Outcome.MALFORMED_INPUT:
            return render(f"malformed_{result.data.get('field')}", {})
        return render("apology", {})
    except (KeyError, ValueError, TypeError, ArithmeticError):
        logger.exception(
            "reply rendering failed",
            extra={"extra_fields": safe_log_context(outcome=result.outcome)},
        )
        return APOLOGY_TEXT


def compose_prompt(prompt: Prompt, config: EngineConfig) -> str:
    """Render an onboarding prompt. Never raises."""
    params = dict(prompt.params)
    try:
        if prompt.key == PromptKey.WELCOME:
            name = params.get("display_name")
            params = {
                "greeting": f"Hey {name}! 👋" if name else "Hey! 👋",
                "product_name": params["product_name"],
                "choices": _choices(params["project_types"]),
            }
        elif prompt.key == PromptKey.ASK_PROJECT_TYPE:
            params = {"choices": _choices(params["project_types"])}
        elif prompt.key == PromptKey.CONFIRM_SUMMARY:
            params = {
                "project_type": params.get("project_type") or _NOT_SET,
                "location": params.get("location") or _NOT_SET,
                "start_date": params.get("start_date") or _NOT_SET,
                "budget": format_money(
                    params.get("budget"), params.get("currency") or config.default_currency
                ),
            }
        return render(prompt.key.value, params)
    except (KeyError, ValueError, TypeError, ArithmeticError):
        logger.exception(
            "prompt rendering failed",
            extra={"extra_fields": safe_log_context(prompt=prompt.key)},
        )
        return APOLOGY_TEXT
