"""Engine configuration from the environment.

Read once at startup by the app factory. Invalid values raise ConfigError so
a misconfigured process fails before accepting traffic.

Environment:
    PRODUCT_NAME            default "JengaTrack"
    DEFAULT_CURRENCY        default "UGX"
    DASHBOARD_URL           default "https://jengatrack.app"
    BUDGET_WARNING_RATIO    default "0.8", must be in (0, 1]
    CATEGORY_TABLE_PATH     optional JSON file: [[category, [keyword, ...]], ...]
"""

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path

from pydantic import RootModel, ValidationError, field_validator

from jengatrack.domain.rules import EngineConfig


class ConfigError(RuntimeError):
    """Raised when the environment holds an unusable value."""


class CategoryTable(RootModel[list[tuple[str, list[str]]]]):
    """Ordered keyword -> category table as stored on disk."""

    @field_validator("root")
    @classmethod
    def _check(cls, value: list[tuple[str, list[str]]]) -> list[tuple[str, list[str]]]:
        if not value:
            raise ValueError("category table is empty")

        seen: set[str] = set()
        cleaned = []
        for name, keywords in value:
            name = name.strip()
            if not name:
                raise ValueError("category name is blank")
            if name.lower() in seen:
                raise ValueError(f"duplicate category: {name}")
            seen.add(name.lower())

            words = [k.strip().lower() for k in keywords if k.strip()]
            if not words:
                raise ValueError(f"category {name} has no keywords")
            cleaned.append((name, words))
        return cleaned

    def as_config(self) -> tuple[tuple[str, tuple[str, ...]], ...]:
        return tuple((name, tuple(words)) for name, words in self.root)


def load_category_table(path: str | Path) -> tuple[tuple[str, tuple[str, ...]], ...]:
    """Load and validate a category table JSON file."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read category table: {path}") from exc

    try:
        return CategoryTable.model_validate_json(raw).as_config()
    except ValidationError as exc:
        raise ConfigError(f"invalid category table {path}: {exc.error_count()} error(s)") from exc


def _warning_ratio(raw: str) -> Decimal:
    try:
        ratio = Decimal(raw)
    except InvalidOperation as exc:
        raise ConfigError(f"BUDGET_WARNING_RATIO is not a number: {raw!r}") from exc
    if not ratio.is_finite() or not (Decimal(0) < ratio <= Decimal(1)):
        raise ConfigError(f"BUDGET_WARNING_RATIO must be in (0, 1]: {raw!r}")
    return ratio


def load_engine_config() -> EngineConfig:
    """Build the process-wide EngineConfig from environment variables."""
    defaults = EngineConfig()

    product_name = os.environ.get("PRODUCT_NAME", "").strip() or defaults.product_name
    currency = os.environ.get("DEFAULT_CURRENCY", "").strip().upper() or defaults.default_currency

    config = EngineConfig(
        product_name=product_name,
        default_currency=currency,
        dashboard_url=os.environ.get("DASHBOARD_URL", "").strip() or defaults.dashboard_url,
        budget_warning_ratio=_warning_ratio(
            os.environ.get("BUDGET_WARNING_RATIO", "").strip()
            or str(defaults.budget_warning_ratio)
        ),
    )

    table_path = os.environ.get("CATEGORY_TABLE_PATH", "").strip()
    if table_path:
        config = config.with_categories(load_category_table(table_path))

    return config
