"""Deterministic intent classification of inbound messages.

NO LLM. Uses the regex pattern library carried by EngineConfig.
Security: NEVER log raw text (PII).
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

from jengatrack.domain.intents import (
    UNKNOWN_RESULT,
    ClassificationResult,
    ExtractedFields,
    Intent,
)
from jengatrack.domain.rules import (
    IMAGE_CONFIDENCE,
    INTENT_PRIORITY,
    EngineConfig,
    PatternRule,
    categorize,
)

_SHORTHAND = {"k": Decimal(1_000), "m": Decimal(1_000_000)}
_MULTIPLIER_WORDS = {"thousand": Decimal(1_000), "million": Decimal(1_000_000)}

_PLAIN_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# Due date phrases inside task titles. Numeric dates need "by"/"due" so
# quantities like "12-15 rows" or "2/3 of the site" stay in the title.
_DUE_ABSOLUTE = re.compile(
    r"\s*\b(?:by|due)\s+(\d{1,2})[/\-](\d{1,2})(?:[/\-](\d{4}))?(?![\w/\-])", re.IGNORECASE
)
_DUE_WEEKDAY = re.compile(
    r"\s*\b(?:by|on|due)\s+(" + "|".join(_WEEKDAYS) + r")(?![\w'])", re.IGNORECASE
)
_DUE_RELATIVE = re.compile(r"\s*\b(?:by\s+)?(today|tomorrow)(?![\w'])", re.IGNORECASE)

# Prepositions left dangling when the amount is cut out of free text
_LEADING_FILLER = re.compile(r"^(?:for|on|to|ku|pa)\s+", re.IGNORECASE)


@dataclass(frozen=True)
class LocaleHints:
    """Contact-level hints. Never override what the text states explicitly."""

    currency: str | None = None
    language: str | None = None


@dataclass(frozen=True)
class _Candidate:
    rule: PatternRule
    order: int
    fields: ExtractedFields


def parse_amount(token: str) -> Decimal | None:
    """Parse an amount token with locale shorthand.

    "50k" -> 50000, "1M"/"1m" -> 1000000, "2,500" -> 2500,
    "5 million" -> 5000000.
    Returns None for anything non-numeric, zero or negative.
    """
    if token is None:
        return None

    cleaned = token.strip().replace(",", "").replace(" ", "").lower()
    if not cleaned:
        return None

    multiplier = Decimal(1)
    for word, factor in _MULTIPLIER_WORDS.items():
        if cleaned.endswith(word):
            multiplier = factor
            cleaned = cleaned[: -len(word)]
            break
    else:
        if cleaned[-1] in _SHORTHAND:
            multiplier = _SHORTHAND[cleaned[-1]]
            cleaned = cleaned[:-1]

    if not _PLAIN_NUMBER.match(cleaned):
        return None

    try:
        value = Decimal(cleaned) * multiplier
    except InvalidOperation:
        return None

    if value <= 0:
        return None

    if value == value.to_integral_value():
        return value.quantize(Decimal(1))
    return value


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"\s+", " ", value).strip(" \t.,;:!?-")
    return cleaned or None


def _detect_currency(text: str, config: EngineConfig) -> str | None:
    codes = "|".join(re.escape(code) for code in config.currency_codes)
    match = re.search(rf"\b({codes})\b", text, re.IGNORECASE)
    return match.group(1).upper() if match else None


def _is_urgent(text: str, config: EngineConfig) -> bool:
    lowered = text.lower()
    return any(
        re.search(rf"\b{re.escape(keyword)}\b", lowered)
        for keyword in config.urgency_keywords
    )


def _resolve_date(day: int, month: int, year: int | None, reference: date) -> date | None:
    y = year if year is not None else reference.year
    if not (1 <= month <= 12):
        return None
    if not (1 <= day <= calendar.monthrange(y, month)[1]):
        return None
    resolved = date(y, month, day)
    # Yearless dates already behind us refer to next year
    if year is None and resolved < reference:
        try:
            resolved = date(y + 1, month, day)
        except ValueError:
            return None
    return resolved


def extract_due_date(
    title: str, reference_date: date
) -> tuple[str, date | None, bool]:
    """Pull a due-date phrase out of a task title.

    Returns (title without the phrase, due date, malformed). A matched phrase
    naming an impossible date ("by 31/02") comes back as malformed.
    """
    match = _DUE_ABSOLUTE.search(title)
    if match:
        day, month, year = match.groups()
        due = _resolve_date(int(day), int(month), int(year) if year else None, reference_date)
        remaining = title[: match.start()] + title[match.end():]
        return remaining, due, due is None

    match = _DUE_WEEKDAY.search(title)
    if match:
        target = _WEEKDAYS.index(match.group(1).lower())
        days_ahead = (target - reference_date.weekday()) % 7 or 7
        remaining = title[: match.start()] + title[match.end():]
        return remaining, reference_date + timedelta(days=days_ahead), False

    match = _DUE_RELATIVE.search(title)
    if match:
        offset = 0 if match.group(1).lower() == "today" else 1
        remaining = title[: match.start()] + title[match.end():]
        return remaining, reference_date + timedelta(days=offset), False

    return title, None, False


def _evaluate(
    rule: PatternRule,
    text: str,
    config: EngineConfig,
    hints: LocaleHints,
    reference_date: date | None,
) -> tuple[ExtractedFields | None, bool]:
    """Run one rule. Returns (fields, malformed_amount).

    fields is None when the rule does not match. A rule whose amount group
    matched but failed to parse reports malformed_amount=True.
    """
    match = rule.pattern.search(text)
    if not match:
        return None, False

    groups = match.groupdict()
    amount = None
    if "amount" in groups:
        amount = parse_amount(groups["amount"])
        if amount is None:
            return None, True

    currency = _detect_currency(text, config) or hints.currency

    if rule.intent == Intent.CREATE_TASK:
        title = groups.get("title") or ""
        due_date = None
        malformed: tuple[str, ...] = ()
        if reference_date is not None and title:
            title, due_date, bad_date = extract_due_date(title, reference_date)
            if bad_date:
                malformed = ("due_date",)
        return ExtractedFields(
            title=_clean_text(title),
            due_date=due_date,
            urgent=_is_urgent(text, config),
            malformed=malformed,
        ), False

    if rule.intent == Intent.LOG_EXPENSE:
        if rule.remainder_as_desc:
            remainder = text[: match.start()] + " " + text[match.end():]
            description = _clean_text(_LEADING_FILLER.sub("", remainder.strip()))
        else:
            description = _clean_text(groups.get("desc")) or rule.default_description
        return ExtractedFields(
            amount=amount,
            description=description,
            category_hint=(
                categorize(description, config.category_table) if description else None
            ),
            currency=currency,
        ), False

    if rule.intent == Intent.SET_BUDGET:
        return ExtractedFields(amount=amount, currency=currency), False

    return ExtractedFields(), False


def _rank(candidate: _Candidate, hints: LocaleHints) -> tuple:
    # Higher confidence first, then intent priority, then hinted language,
    # then library order
    return (
        -candidate.rule.confidence,
        INTENT_PRIORITY.index(candidate.rule.intent),
        0 if hints.language and candidate.rule.language == hints.language else 1,
        candidate.order,
    )


def _collect(
    text: str,
    config: EngineConfig,
    hints: LocaleHints,
    reference_date: date | None,
    intents: tuple[Intent, ...] = INTENT_PRIORITY,
) -> tuple[list[_Candidate], list[_Candidate]]:
    matches: list[_Candidate] = []
    malformed: list[_Candidate] = []
    for order, rule in enumerate(config.patterns):
        if rule.intent not in intents:
            continue
        if rule.confidence < config.floor_for(rule.intent):
            continue
        fields, bad_amount = _evaluate(rule, text, config, hints, reference_date)
        if fields is not None:
            matches.append(_Candidate(rule=rule, order=order, fields=fields))
        elif bad_amount:
            malformed.append(
                _Candidate(
                    rule=rule,
                    order=order,
                    fields=ExtractedFields(malformed=("amount",)),
                )
            )
    return matches, malformed


def _result(candidate: _Candidate) -> ClassificationResult:
    return ClassificationResult(
        intent=candidate.rule.intent,
        confidence=candidate.rule.confidence,
        fields=candidate.fields,
        language=candidate.rule.language,
        rule=candidate.rule.name,
    )


def classify(
    text: str | None,
    config: EngineConfig,
    *,
    attachment_url: str | None = None,
    has_attachment: bool = False,
    hints: LocaleHints | None = None,
    reference_date: date | None = None,
) -> ClassificationResult:
    """Classify a message into an intent with extracted fields.

    Pure: the same arguments always give the same result. Relative due dates
    are only resolved when reference_date is supplied.
    """
    hints = hints or LocaleHints()
    normalized = re.sub(r"\s+", " ", text or "").strip()

    if attachment_url or has_attachment:
        return _classify_attachment(normalized, attachment_url, config, hints)

    if not normalized:
        return UNKNOWN_RESULT

    matches, malformed = _collect(normalized, config, hints, reference_date)
    if matches:
        return _result(min(matches, key=lambda c: _rank(c, hints)))
    if malformed:
        # Shape was recognised but the number was not usable
        return _result(min(malformed, key=lambda c: _rank(c, hints)))
    return UNKNOWN_RESULT


def _classify_attachment(
    caption: str,
    attachment_url: str | None,
    config: EngineConfig,
    hints: LocaleHints,
) -> ClassificationResult:
    if IMAGE_CONFIDENCE < config.floor_for(Intent.LOG_IMAGE):
        return UNKNOWN_RESULT

    amount = None
    description = None
    category_hint = None
    currency = None
    language = None
    rule_name = None

    if caption:
        matches, _ = _collect(
            caption, config, hints, None, intents=(Intent.LOG_EXPENSE,)
        )
        if matches:
            best = min(matches, key=lambda c: _rank(c, hints))
            amount = best.fields.amount
            description = best.fields.description
            category_hint = best.fields.category_hint
            currency = best.fields.currency
            language = best.rule.language
            rule_name = best.rule.name

    return ClassificationResult(
        intent=Intent.LOG_IMAGE,
        confidence=IMAGE_CONFIDENCE,
        fields=ExtractedFields(
            amount=amount,
            description=description,
            category_hint=category_hint,
            currency=currency,
            attachment_url=attachment_url,
            caption=caption or None,
        ),
        language=language,
        rule=rule_name,
    )
