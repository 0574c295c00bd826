"""Project onboarding dialogue.

Pure state machine: advance() never touches the store. Project creation is
returned as a request and executed by the command engine, which decides the
final state depending on whether creation succeeded.

Transitions:
    none -> welcome_sent                    (start message)
    completed -> welcome_sent               (message that is only a start phrase)
    welcome_sent -> awaiting_project_type   (any reply; a valid choice is
                                            also taken as the project type)
    awaiting_project_type -> awaiting_location -> awaiting_start_date
        -> awaiting_budget -> confirmation  (any reply, "skip" stores nothing)
    confirmation -> completed               (yes, creates project)
    confirmation -> welcome_sent            (edit, fields reset)
    confirmation -> completed               (skip, no project)
    confirmation -> confirmation            (anything else, summary resent)
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from jengatrack.domain.models import (
    Contact,
    DialogueState,
    OnboardingFields,
    ProjectRequest,
)
from jengatrack.domain.parsing import parse_amount
from jengatrack.domain.rules import AMOUNT_TOKEN, GREETINGS, EngineConfig

PROJECT_TYPES: tuple[str, ...] = ("Residential home", "Commercial building", "Other")

# Free-text aliases for the numbered project type choices
_PROJECT_TYPE_ALIASES: dict[str, str] = {
    "residential": "Residential home",
    "home": "Residential home",
    "house": "Residential home",
    "ennyumba": "Residential home",
    "commercial": "Commercial building",
    "building": "Commercial building",
    "shop": "Commercial building",
    "office": "Commercial building",
    "other": "Other",
}

SKIP_TOKENS = frozenset({"skip", "later", "n/a", "-"})
CONFIRM_TOKENS = frozenset({"yes", "y", "confirm", "1", "ok", "okay", "yee", "yeah"})
EDIT_TOKENS = frozenset({"edit", "change", "2", "no"})
CONFIRM_SKIP_TOKENS = frozenset({"skip", "later", "3"})

DEFAULT_PROJECT_NAME = "Construction Project"
ONBOARDING_DESCRIPTION = "Project created via WhatsApp onboarding"

_BUDGET_TOKEN = re.compile(AMOUNT_TOKEN, re.IGNORECASE)

_FIELD_STEPS: dict[DialogueState, tuple[str, DialogueState]] = {
    DialogueState.AWAITING_PROJECT_TYPE: ("project_type", DialogueState.AWAITING_LOCATION),
    DialogueState.AWAITING_LOCATION: ("location", DialogueState.AWAITING_START_DATE),
    DialogueState.AWAITING_START_DATE: ("start_date", DialogueState.AWAITING_BUDGET),
    DialogueState.AWAITING_BUDGET: ("budget", DialogueState.CONFIRMATION),
}


class PromptKey(str, Enum):
    """Outbound messages the dialogue can produce."""

    WELCOME = "onboarding_welcome"
    ASK_PROJECT_TYPE = "onboarding_ask_project_type"
    ASK_LOCATION = "onboarding_ask_location"
    ASK_START_DATE = "onboarding_ask_start_date"
    ASK_BUDGET = "onboarding_ask_budget"
    CONFIRM_SUMMARY = "onboarding_confirm_summary"
    PROJECT_CREATED = "onboarding_project_created"
    PROJECT_FAILED = "onboarding_project_failed"
    SKIPPED = "onboarding_skipped"


@dataclass(frozen=True)
class Prompt:
    key: PromptKey
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    """Outcome of one dialogue step."""

    state: DialogueState
    fields: OnboardingFields
    prompt: Prompt
    project_request: ProjectRequest | None = None

    @property
    def completes(self) -> bool:
        return self.state == DialogueState.COMPLETED


def _normalize(text: str | None) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower()).strip(" .!?,")


def is_start_message(text: str | None, config: EngineConfig, *, exact: bool = False) -> bool:
    """True for "hey <product>" greetings and explicit start keywords.

    With exact=True the whole message must be the phrase, so "begin roofing
    tomorrow" from a contact who already finished onboarding stays a command.
    """
    normalized = _normalize(text)
    if not normalized:
        return False

    end = "$" if exact else r"\b"
    names = (config.product_name.lower(), *config.product_aliases)
    greeting = "|".join(re.escape(g) for g in GREETINGS)
    product = "|".join(re.escape(n) for n in names)
    if re.match(rf"^(?:{greeting})\s+(?:{product}){end}", normalized):
        return True

    return any(
        re.match(rf"^{re.escape(keyword)}{end}", normalized)
        for keyword in config.start_keywords
    )


def resolve_project_type(text: str) -> str | None:
    """Map a numbered choice or a known name to a project type.

    Returns None for anything unrecognised; callers keep the raw text.
    """
    normalized = _normalize(text)
    if normalized.isdigit():
        index = int(normalized) - 1
        if 0 <= index < len(PROJECT_TYPES):
            return PROJECT_TYPES[index]
        return None

    for project_type in PROJECT_TYPES:
        if normalized == project_type.lower():
            return project_type
    for word in normalized.split():
        if word in _PROJECT_TYPE_ALIASES:
            return _PROJECT_TYPE_ALIASES[word]
    return None


def project_name(fields: OnboardingFields) -> str:
    base = fields.project_type or DEFAULT_PROJECT_NAME
    if fields.location:
        return f"{base} - {fields.location}"
    return base


def _summary_prompt(fields: OnboardingFields, currency: str) -> Prompt:
    return Prompt(
        PromptKey.CONFIRM_SUMMARY,
        {
            "project_type": fields.project_type,
            "location": fields.location,
            "start_date": fields.start_date,
            "budget": fields.budget,
            "currency": currency,
        },
    )


def _store_field(fields: OnboardingFields, name: str, raw: str) -> OnboardingFields:
    """Store one answer. Unrecognised input is kept verbatim."""
    cleaned = re.sub(r"\s+", " ", raw.strip())
    if _normalize(raw) in SKIP_TOKENS or not cleaned:
        value = None
    elif name == "project_type":
        value = resolve_project_type(cleaned) or cleaned
    elif name == "budget":
        token = _BUDGET_TOKEN.search(cleaned)
        value = parse_amount(token.group(0)) if token else None
    else:
        value = cleaned

    return replace(fields, **{name: value})


def _welcome(contact: Contact, config: EngineConfig) -> Transition:
    return Transition(
        state=DialogueState.WELCOME_SENT,
        fields=OnboardingFields(),
        prompt=Prompt(
            PromptKey.WELCOME,
            {
                "product_name": config.product_name,
                "display_name": contact.display_name,
                "project_types": PROJECT_TYPES,
            },
        ),
    )


_NEXT_PROMPT: dict[DialogueState, PromptKey] = {
    DialogueState.AWAITING_LOCATION: PromptKey.ASK_LOCATION,
    DialogueState.AWAITING_START_DATE: PromptKey.ASK_START_DATE,
    DialogueState.AWAITING_BUDGET: PromptKey.ASK_BUDGET,
}


def advance(
    contact: Contact,
    state: DialogueState,
    fields: OnboardingFields,
    text: str | None,
    config: EngineConfig,
) -> Transition:
    """Advance the dialogue by one message.

    Never fails on free text: whatever arrives is taken as the answer to the
    current question.
    """
    raw = text or ""

    if not state.in_progress:
        return _welcome(contact, config)

    if state == DialogueState.WELCOME_SENT:
        # The welcome lists the choices, so a valid choice answers the
        # project type question straight away
        if resolve_project_type(raw) or _normalize(raw) in SKIP_TOKENS:
            return advance(
                contact, DialogueState.AWAITING_PROJECT_TYPE, fields, raw, config
            )
        return Transition(
            state=DialogueState.AWAITING_PROJECT_TYPE,
            fields=fields,
            prompt=Prompt(PromptKey.ASK_PROJECT_TYPE, {"project_types": PROJECT_TYPES}),
        )

    if state in _FIELD_STEPS:
        name, next_state = _FIELD_STEPS[state]
        updated = _store_field(fields, name, raw)
        if next_state == DialogueState.CONFIRMATION:
            prompt = _summary_prompt(updated, contact.default_currency)
        else:
            prompt = Prompt(
                _NEXT_PROMPT[next_state],
                {"currency": contact.default_currency}
                if next_state == DialogueState.AWAITING_BUDGET
                else {},
            )
        return Transition(state=next_state, fields=updated, prompt=prompt)

    # Confirmation
    answer = _normalize(raw)
    if answer in CONFIRM_TOKENS:
        request = ProjectRequest(
            owner_id=contact.id,
            name=project_name(fields),
            description=ONBOARDING_DESCRIPTION,
            budget=fields.budget,
            currency=contact.default_currency,
        )
        return Transition(
            state=DialogueState.COMPLETED,
            fields=OnboardingFields(),
            prompt=Prompt(
                PromptKey.PROJECT_CREATED,
                {"project_name": request.name, "dashboard_url": config.dashboard_url},
            ),
            project_request=request,
        )

    if answer in EDIT_TOKENS:
        return _welcome(contact, config)

    if answer in CONFIRM_SKIP_TOKENS:
        return Transition(
            state=DialogueState.COMPLETED,
            fields=OnboardingFields(),
            prompt=Prompt(PromptKey.SKIPPED, {"dashboard_url": config.dashboard_url}),
        )

    return Transition(
        state=state, fields=fields, prompt=_summary_prompt(fields, contact.default_currency)
    )
