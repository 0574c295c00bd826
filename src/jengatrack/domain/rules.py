"""Static recognition rules and the engine configuration value.

The pattern library and keyword tables are read-only data. They are bundled
into an EngineConfig built once at startup (see infra.settings) and passed
explicitly to the classifier, the onboarding machine and the dispatcher.
"""

import re
from dataclasses import dataclass, field, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from jengatrack.domain.intents import Intent

# Bump when rules change so audit rows can be traced to a rule set
PATTERN_LIBRARY_VERSION = "2024.3"

# Amount token: digits with optional thousands separators, decimals and a
# k/M shorthand or a thousand/million word. Must not run into a following
# word character.
AMOUNT_TOKEN = r"\d[\d,]*(?:\.\d+)?(?:\s?[kKmM]|\s*(?:thousand|million))?(?!\w)"
_AMOUNT = rf"(?P<amount>{AMOUNT_TOKEN})"

# Optional currency code written in front of the amount ("UGX 50,000")
_CURRENCY_CODES = ("UGX", "USH", "KSH", "TZS", "USD", "EUR", "GBP")
_CUR = r"(?:(?:ugx|ush|ksh|tzs|usd|eur|gbp)\.?\s*)?"


@dataclass(frozen=True)
class PatternRule:
    """One surface pattern for one intent in one language.

    Named groups drive extraction:
    - amount: parsed with shorthand rules; unparseable or <= 0 voids the match
    - desc / title: cleaned free text
    If remainder_as_desc is set, the description is the text with the amount
    token removed (last-resort numeric rule).
    """

    name: str
    intent: Intent
    language: str
    pattern: re.Pattern[str]
    confidence: float
    default_description: str | None = None
    remainder_as_desc: bool = False


def _rule(
    name: str,
    intent: Intent,
    language: str,
    regex: str,
    confidence: float,
    **kwargs,
) -> PatternRule:
    return PatternRule(
        name=name,
        intent=intent,
        language=language,
        pattern=re.compile(regex, re.IGNORECASE),
        confidence=confidence,
        **kwargs,
    )


_E = Intent.LOG_EXPENSE
_T = Intent.CREATE_TASK
_B = Intent.SET_BUDGET
_Q = Intent.QUERY_EXPENSES

DEFAULT_PATTERNS: tuple[PatternRule, ...] = (
    # ── Expenses ──────────────────────────────────────────────
    # "spent 500 on cement", "paid UGX 200,000 for bricks"
    _rule("en_spent_on", _E, "en",
          rf"\b(?:spent|paid|used)\s+{_CUR}{_AMOUNT}\s+(?:on|for|to)\s+(?P<desc>.+)", 0.95),
    # "bought sand 150k", "purchased cement for 500000"
    _rule("en_bought", _E, "en",
          rf"\b(?:bought|purchased)\s+(?P<desc>.+?)\s+(?:for\s+)?{_CUR}{_AMOUNT}", 0.95),
    # "paid workers 2M"
    _rule("en_paid_desc_amount", _E, "en",
          rf"\b(?:spent|paid)\s+(?P<desc>[^\d].*?)\s+{_CUR}{_AMOUNT}", 0.90),
    # "nimaze 300 ku sand" (I spent 300 on sand)
    _rule("lg_nimaze", _E, "lg",
          rf"\b(?:nimaze|nasasudde)\s+{_CUR}{_AMOUNT}\s+(?:ku|pa)\s+(?P<desc>.+)", 0.95),
    # "naguze cement 500" (I bought cement 500)
    _rule("lg_naguze", _E, "lg",
          rf"\b(?:naguze|natundidde)\s+(?P<desc>.+?)\s+{_CUR}{_AMOUNT}", 0.95),
    # "omaze 500 ku blocks"
    _rule("lg_omaze", _E, "lg",
          rf"\b(?:omaze|wasasudde)\s+{_CUR}{_AMOUNT}(?:\s+(?:ku\s+)?(?P<desc>.+))?", 0.90,
          default_description="Expense"),
    # "500000 for cement"
    _rule("en_amount_for", _E, "en",
          rf"^{_CUR}{_AMOUNT}\s+(?:for|on)\s+(?P<desc>.+)", 0.85),
    # "500 bricks" - ambiguous with quantities
    _rule("generic_amount_text", _E, "en",
          rf"^{_CUR}{_AMOUNT}\s+(?P<desc>[^\d\s].*)", 0.65),
    # "cement 500000 bags"
    _rule("generic_text_amount", _E, "en",
          rf"^(?P<desc>[a-z][a-z\s]*?)\s+{_CUR}{_AMOUNT}", 0.65),
    # any number plus some words
    _rule("fallback_number", _E, "en", _AMOUNT, 0.60, remainder_as_desc=True),
    # ── Tasks ─────────────────────────────────────────────────
    _rule("en_task_prefix", _T, "en", r"\b(?:add\s+)?task\s*:\s*(?P<title>.*)", 0.95),
    _rule("en_todo", _T, "en", r"\b(?:todo|to\s+do)\s*:\s*(?P<title>.*)", 0.95),
    _rule("en_urgent_prefix", _T, "en",
          r"^(?:urgent|important|priority)\s*:\s*(?P<title>.*)", 0.95),
    _rule("en_remind", _T, "en",
          r"\b(?:remind\s+me\s+to|need\s+to|have\s+to)\s+(?P<title>.+)", 0.90),
    _rule("lg_omulimu", _T, "lg", r"^omulimu\s*:\s*(?P<title>.*)", 0.95),
    # ── Budget ────────────────────────────────────────────────
    _rule("en_set_budget", _B, "en",
          rf"\b(?:set\s+)?budget\s+(?:is\s+|to\s+|of\s+)?{_CUR}{_AMOUNT}", 0.95),
    _rule("en_change_budget", _B, "en",
          rf"\b(?:change|update|increase|reduce)\s+(?:the\s+|my\s+)?budget\s+to\s+{_CUR}{_AMOUNT}",
          0.95),
    _rule("lg_budget_yange", _B, "lg",
          rf"\bbudget\s+(?:yange|yaffe)\s+{_CUR}{_AMOUNT}", 0.90),
    # ── Queries ───────────────────────────────────────────────
    _rule("en_how_much", _Q, "en",
          r"\b(?:how\s+much|total|what.*spent|show.*expenses|list.*expenses)\b", 0.90),
    _rule("en_spent_period", _Q, "en",
          r"\bspent\s+(?:today|this\s+week|this\s+month)\b", 0.90),
    _rule("en_money_left", _Q, "en",
          r"\b(?:where.*money|how.*much.*left|budget\s+status)\b", 0.90),
    _rule("en_report", _Q, "en", r"\b(?:report|summary|balance|remaining)\b", 0.80),
    _rule("lg_how_much", _Q, "lg",
          r"\b(?:ssente\s+zmeka|omaze\s+meka|ensimbi\s+zmeka)\b", 0.90),
    _rule("lg_report", _Q, "lg", r"\b(?:lipoota|okebera)\b", 0.80),
)

# Tie-break order when two intents score the same
INTENT_PRIORITY: tuple[Intent, ...] = (_E, _T, _B, _Q)

DEFAULT_CONFIDENCE_FLOORS: Mapping[Intent, float] = MappingProxyType({
    Intent.LOG_EXPENSE: 0.5,
    Intent.CREATE_TASK: 0.85,
    Intent.SET_BUDGET: 0.85,
    Intent.QUERY_EXPENSES: 0.4,
    Intent.LOG_IMAGE: 0.5,
})

IMAGE_CONFIDENCE = 0.90

# Ordered (category, keywords); first category with a matching keyword wins
DEFAULT_CATEGORY_TABLE: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Materials", ("cement", "sand", "brick", "steel", "iron", "timber", "wood",
                   "stone", "gravel", "aggregate", "nails", "tiles", "roofing", "blocks")),
    ("Labor", ("worker", "labour", "labor", "mason", "carpenter", "plumber",
               "electrician", "painter", "wages", "salary", "fundi")),
    ("Equipment", ("equipment", "tools", "machine", "excavator", "mixer",
                   "generator", "scaffolding")),
    ("Transport", ("transport", "delivery", "fuel", "petrol", "diesel", "lorry",
                   "truck", "vehicle", "boda")),
    ("Miscellaneous", ("misc", "other", "sundry")),
)

FALLBACK_CATEGORY = "Miscellaneous"

DEFAULT_URGENCY_KEYWORDS: tuple[str, ...] = (
    "urgent", "asap", "important", "emergency", "immediately", "mangu",
)

DEFAULT_START_KEYWORDS: tuple[str, ...] = (
    "start", "get started", "begin", "new project", "create project", "tandika",
)

GREETINGS: tuple[str, ...] = ("hey", "hi", "hello")


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration for one process.

    Built once at startup; never mutated. Tests build their own with
    dataclasses.replace() to substitute tables.
    """

    patterns: tuple[PatternRule, ...] = DEFAULT_PATTERNS
    confidence_floors: Mapping[Intent, float] = field(
        default_factory=lambda: DEFAULT_CONFIDENCE_FLOORS
    )
    category_table: tuple[tuple[str, tuple[str, ...]], ...] = DEFAULT_CATEGORY_TABLE
    urgency_keywords: tuple[str, ...] = DEFAULT_URGENCY_KEYWORDS
    start_keywords: tuple[str, ...] = DEFAULT_START_KEYWORDS
    product_name: str = "JengaTrack"
    product_aliases: tuple[str, ...] = ("jenga",)
    default_currency: str = "UGX"
    currency_codes: tuple[str, ...] = _CURRENCY_CODES
    dashboard_url: str = "https://jengatrack.app"
    budget_warning_ratio: Decimal = Decimal("0.8")
    pattern_version: str = PATTERN_LIBRARY_VERSION
    timezone: str = "Africa/Kampala"

    def floor_for(self, intent: Intent) -> float:
        return self.confidence_floors.get(intent, 1.0)

    def with_categories(
        self, table: tuple[tuple[str, tuple[str, ...]], ...]
    ) -> "EngineConfig":
        return replace(self, category_table=table)


def categorize(description: str, table: tuple[tuple[str, tuple[str, ...]], ...]) -> str:
    """Assign a category by keyword.

    A keyword matches at the start of any word in the description, so
    "bricks" matches "brick". First matching category in table order wins.
    """
    text = description.lower()
    for category, keywords in table:
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword.lower())}", text):
                return category
    return FALLBACK_CATEGORY
