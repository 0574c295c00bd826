"""Shared pytest fixtures for JengaTrack tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from jengatrack.domain.rules import EngineConfig  # noqa: E402

from .helpers import FakeStore  # noqa: E402


@pytest.fixture
def config() -> EngineConfig:
    """Default engine configuration (built-in tables)."""
    return EngineConfig()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture(autouse=True)
def _clean_engine_env(monkeypatch):
    """Keep configuration env vars from leaking into tests.

    The app factory reads them at startup; a developer shell exporting
    CATEGORY_TABLE_PATH would otherwise change categorisation results.
    """
    for name in (
        "PRODUCT_NAME",
        "DEFAULT_CURRENCY",
        "DASHBOARD_URL",
        "BUDGET_WARNING_RATIO",
        "CATEGORY_TABLE_PATH",
        "WEBHOOK_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
