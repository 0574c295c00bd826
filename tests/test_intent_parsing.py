"""Golden tests for deterministic intent classification."""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from types import MappingProxyType

import pytest

from jengatrack.domain.intents import UNKNOWN_RESULT, Intent
from jengatrack.domain.parsing import LocaleHints, classify, extract_due_date, parse_amount
from jengatrack.domain.rules import DEFAULT_CONFIDENCE_FLOORS, EngineConfig, categorize

# A Tuesday
REF = date(2026, 3, 10)


class TestParseAmount:
    """Locale shorthand normalisation."""

    @pytest.mark.parametrize(
        "token,expected",
        [
            ("500", Decimal("500")),
            ("50k", Decimal("50000")),
            ("50K", Decimal("50000")),
            ("1M", Decimal("1000000")),
            ("1m", Decimal("1000000")),
            ("2,500", Decimal("2500")),
            ("1,250,000", Decimal("1250000")),
            ("1.5M", Decimal("1500000")),
            ("50 k", Decimal("50000")),
            ("12.50", Decimal("12.50")),
            ("5 million", Decimal("5000000")),
            ("1.5 Million", Decimal("1500000")),
            ("20 thousand", Decimal("20000")),
        ],
    )
    def test_valid_tokens(self, token, expected):
        assert parse_amount(token) == expected

    @pytest.mark.parametrize(
        "token", ["", "k", "abc", "0", "0k", "-5", "1.2.3", "5x", "million"]
    )
    def test_invalid_tokens(self, token):
        assert parse_amount(token) is None

    def test_integral_values_have_no_exponent(self):
        """1.5M comes back as a plain integer Decimal."""
        assert str(parse_amount("1.5M")) == "1500000"


class TestExpenseClassification:
    def test_spent_on(self, config):
        result = classify("spent 50000 on cement", config)

        assert result.intent == Intent.LOG_EXPENSE
        assert result.confidence == pytest.approx(0.95)
        assert result.fields.amount == Decimal("50000")
        assert result.fields.description == "cement"
        assert result.fields.category_hint == "Materials"
        assert result.language == "en"
        assert result.rule == "en_spent_on"

    def test_shorthand_amount(self, config):
        result = classify("paid 200k for bricks", config)

        assert result.intent == Intent.LOG_EXPENSE
        assert result.fields.amount == Decimal("200000")
        assert result.fields.description == "bricks"

    def test_million_word_multiplies(self, config):
        result = classify("spent 5 million on roofing", config)

        assert result.rule == "en_spent_on"
        assert result.fields.amount == Decimal("5000000")
        assert result.fields.description == "roofing"

    def test_bought_shape(self, config):
        result = classify("bought sand 150k", config)

        assert result.intent == Intent.LOG_EXPENSE
        assert result.fields.amount == Decimal("150000")
        assert result.fields.description == "sand"

    def test_explicit_currency_is_extracted(self, config):
        result = classify("spent UGX 50,000 on cement", config)

        assert result.fields.amount == Decimal("50000")
        assert result.fields.currency == "UGX"

    def test_foreign_currency_overrides_hint(self, config):
        result = classify(
            "paid usd 200 for tools", config, hints=LocaleHints(currency="UGX")
        )

        assert result.fields.currency == "USD"
        assert result.fields.category_hint == "Equipment"

    def test_currency_hint_used_when_text_has_none(self, config):
        result = classify("spent 500 on sand", config, hints=LocaleHints(currency="KSH"))

        assert result.fields.currency == "KSH"

    def test_generic_amount_text_scores_low(self, config):
        result = classify("500 bricks", config)

        assert result.intent == Intent.LOG_EXPENSE
        assert result.confidence == pytest.approx(0.65)
        assert result.fields.amount == Decimal("500")
        assert result.fields.description == "bricks"

    def test_labor_category(self, config):
        result = classify("paid 300000 to the fundi", config)

        assert result.fields.category_hint == "Labor"

    def test_unmatched_description_falls_back(self, config):
        result = classify("spent 9000 on airtime", config)

        assert result.fields.category_hint == "Miscellaneous"


class TestLugandaPatterns:
    def test_nimaze(self, config):
        result = classify("nimaze 300 ku sand", config)

        assert result.intent == Intent.LOG_EXPENSE
        assert result.language == "lg"
        assert result.fields.amount == Decimal("300")
        assert result.fields.description == "sand"
        assert result.fields.category_hint == "Materials"

    def test_naguze(self, config):
        result = classify("naguze cement 500", config)

        assert result.intent == Intent.LOG_EXPENSE
        assert result.language == "lg"
        assert result.fields.description == "cement"

    def test_budget_yange(self, config):
        result = classify("budget yange 5M", config)

        assert result.intent == Intent.SET_BUDGET
        assert result.language == "lg"
        assert result.fields.amount == Decimal("5000000")

    def test_query(self, config):
        result = classify("ssente zmeka", config)

        assert result.intent == Intent.QUERY_EXPENSES
        assert result.language == "lg"

    def test_task(self, config):
        result = classify("omulimu: okusiba seminti", config)

        assert result.intent == Intent.CREATE_TASK
        assert result.fields.title == "okusiba seminti"


class TestTaskClassification:
    def test_task_prefix(self, config):
        result = classify("task: inspect foundation", config)

        assert result.intent == Intent.CREATE_TASK
        assert result.confidence == pytest.approx(0.95)
        assert result.fields.title == "inspect foundation"
        assert result.fields.urgent is False

    def test_number_in_title_does_not_make_it_an_expense(self, config):
        """A generic numeric match never beats an explicit task prefix."""
        result = classify("task: buy 500 bricks", config)

        assert result.intent == Intent.CREATE_TASK
        assert result.fields.title == "buy 500 bricks"

    def test_urgent_prefix(self, config):
        result = classify("urgent: fix the roof leak", config)

        assert result.intent == Intent.CREATE_TASK
        assert result.fields.urgent is True
        assert result.fields.title == "fix the roof leak"

    def test_urgency_keyword_anywhere(self, config):
        result = classify("todo: order nails asap", config)

        assert result.fields.urgent is True

    def test_remind_me(self, config):
        result = classify("remind me to call the plumber", config)

        assert result.intent == Intent.CREATE_TASK
        assert result.fields.title == "call the plumber"

    def test_empty_title_still_classified(self, config):
        """Missing title is the dispatcher's concern, not the classifier's."""
        result = classify("task:", config)

        assert result.intent == Intent.CREATE_TASK
        assert result.fields.title is None


class TestDueDates:
    def test_absolute_date(self, config):
        result = classify("task: pour slab by 15/03", config, reference_date=REF)

        assert result.fields.title == "pour slab"
        assert result.fields.due_date == date(2026, 3, 15)
        assert result.fields.malformed == ()

    def test_past_yearless_date_rolls_to_next_year(self):
        title, due, malformed = extract_due_date("order steel by 05/01", REF)

        assert title == "order steel"
        assert due == date(2027, 1, 5)
        assert malformed is False

    def test_explicit_year(self):
        _, due, _ = extract_due_date("roofing due 01/02/2027", REF)

        assert due == date(2027, 2, 1)

    def test_impossible_date_is_malformed(self, config):
        result = classify("task: fix gate by 31/02", config, reference_date=REF)

        assert result.intent == Intent.CREATE_TASK
        assert result.fields.due_date is None
        assert result.fields.malformed == ("due_date",)

    def test_tomorrow(self):
        title, due, _ = extract_due_date("call supplier tomorrow", REF)

        assert title == "call supplier"
        assert due == date(2026, 3, 11)

    def test_weekday_is_next_occurrence(self):
        assert extract_due_date("site visit by friday", REF)[1] == date(2026, 3, 13)
        # Same weekday as today means next week
        assert extract_due_date("site visit on tuesday", REF)[1] == date(2026, 3, 17)

    @pytest.mark.parametrize(
        "text,title",
        [
            ("task: lay bricks on 12-15 rows", "lay bricks on 12-15 rows"),
            ("task: finish wall on 2/3 of the site", "finish wall on 2/3 of the site"),
            ("task: check today's delivery", "check today's delivery"),
        ],
    )
    def test_numbers_and_possessives_stay_in_title(self, config, text, title):
        result = classify(text, config, reference_date=REF)

        assert result.intent == Intent.CREATE_TASK
        assert result.fields.title == title
        assert result.fields.due_date is None
        assert result.fields.malformed == ()

    def test_due_keyword_takes_numeric_date(self):
        title, due, malformed = extract_due_date("pour slab due 20-03", REF)

        assert title == "pour slab"
        assert due == date(2026, 3, 20)
        assert malformed is False

    def test_no_reference_date_leaves_title_alone(self, config):
        result = classify("task: pour slab by 15/03", config)

        assert result.fields.title == "pour slab by 15/03"
        assert result.fields.due_date is None


class TestBudgetAndQuery:
    def test_set_budget(self, config):
        result = classify("set budget 2000000", config)

        assert result.intent == Intent.SET_BUDGET
        assert result.confidence == pytest.approx(0.95)
        assert result.fields.amount == Decimal("2000000")

    def test_change_budget(self, config):
        result = classify("increase my budget to 3.5M", config)

        assert result.intent == Intent.SET_BUDGET
        assert result.fields.amount == Decimal("3500000")

    @pytest.mark.parametrize(
        "text",
        [
            "how much did I spend?",
            "what have I spent so far",
            "show expenses",
            "budget status",
            "report",
        ],
    )
    def test_queries(self, config, text):
        assert classify(text, config).intent == Intent.QUERY_EXPENSES


class TestTieBreaksAndFloors:
    def test_equal_confidence_prefers_expense_over_task(self, config):
        result = classify("task: spent 5000 on nails", config)

        assert result.intent == Intent.LOG_EXPENSE
        assert result.rule == "en_spent_on"

    def test_budget_phrase_beats_generic_numeric(self, config):
        """'set budget 2000000' also fits '<text> <number>' at 0.65."""
        result = classify("set budget 2000000", config)

        assert result.rule == "en_set_budget"

    def test_raised_floor_routes_to_unknown(self, config):
        floors = dict(DEFAULT_CONFIDENCE_FLOORS)
        floors[Intent.LOG_EXPENSE] = 0.7
        strict = replace(config, confidence_floors=MappingProxyType(floors))

        assert classify("500 bricks", strict) == UNKNOWN_RESULT
        assert classify("spent 500 on bricks", strict).intent == Intent.LOG_EXPENSE

    def test_default_config_builds(self):
        """EngineConfig() builds with the default floors."""
        first, second = EngineConfig(), EngineConfig()

        assert first.confidence_floors is DEFAULT_CONFIDENCE_FLOORS
        assert first == second
        assert first.floor_for(Intent.CREATE_TASK) == pytest.approx(0.85)
        assert first.floor_for(Intent.UNKNOWN) == 1.0

    def test_language_hint_breaks_equal_ties(self, config):
        """Same confidence, same intent: the hinted language wins."""
        text = "nimaze 300 ku sand"
        assert classify(text, config, hints=LocaleHints(language="lg")).language == "lg"


class TestMalformedAndUnknown:
    def test_zero_amount_is_malformed(self, config):
        result = classify("spent 0 on cement", config)

        assert result.intent == Intent.LOG_EXPENSE
        assert result.fields.malformed == ("amount",)
        assert result.fields.amount is None

    def test_zero_budget_is_malformed(self, config):
        result = classify("set budget 0", config)

        assert result.intent == Intent.SET_BUDGET
        assert result.fields.malformed == ("amount",)

    @pytest.mark.parametrize("text", ["hello", "", "   ", None, "thanks!"])
    def test_unknown(self, config, text):
        result = classify(text, config)

        assert result.intent == Intent.UNKNOWN
        assert result.confidence == 0.0
        assert result.is_unknown()


class TestAttachments:
    URL = "https://api.twilio.com/2010-04-01/Accounts/AC1/Messages/MM1/Media/ME1"

    def test_caption_with_expense(self, config):
        result = classify("spent 20000 on sand", config, attachment_url=self.URL)

        assert result.intent == Intent.LOG_IMAGE
        assert result.confidence == pytest.approx(0.90)
        assert result.fields.attachment_url == self.URL
        assert result.fields.caption == "spent 20000 on sand"
        assert result.fields.amount == Decimal("20000")
        assert result.fields.description == "sand"

    def test_plain_caption(self, config):
        result = classify("foundation progress", config, attachment_url=self.URL)

        assert result.intent == Intent.LOG_IMAGE
        assert result.fields.caption == "foundation progress"
        assert result.fields.amount is None

    def test_no_caption(self, config):
        result = classify(None, config, attachment_url=self.URL)

        assert result.intent == Intent.LOG_IMAGE
        assert result.fields.caption is None

    def test_attachment_without_url(self, config):
        """Counted attachment but no URL: still an image, URL left for validation."""
        result = classify("", config, has_attachment=True)

        assert result.intent == Intent.LOG_IMAGE
        assert result.fields.attachment_url is None


class TestDeterminism:
    @pytest.mark.parametrize(
        "text",
        ["spent 50000 on cement", "task: inspect foundation", "hello", "500 bricks"],
    )
    def test_same_input_same_result(self, config, text):
        first = classify(text, config, reference_date=REF)
        second = classify(text, config, reference_date=REF)

        assert first == second

    def test_substituted_category_table(self, config):
        custom = config.with_categories((("Roofing", ("iron",)),))

        result = classify("spent 1000 on iron sheets", custom)

        assert result.fields.category_hint == "Roofing"
        # Built-in table untouched
        assert classify("spent 1000 on iron sheets", config).fields.category_hint == "Materials"


class TestCategorize:
    def test_prefix_match(self):
        assert categorize("Bricks and mortar", EngineConfig().category_table) == "Materials"

    def test_first_category_wins(self):
        table = (("A", ("cement",)), ("B", ("cement",)))
        assert categorize("cement", table) == "A"

    def test_keyword_not_matched_inside_word(self):
        """'sand' must not match 'thousand'."""
        assert categorize("a thousand thanks", EngineConfig().category_table) == "Miscellaneous"
