"""
Shared fixtures for the finance engine tests.

Everything runs against the in-memory backend; see helpers.py for the
failing storage doubles used to exercise best-effort behaviour.
"""

import pytest

from finance_engine.config import get_settings
from helpers import EngineHarness


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached process-wide; never leak env changes between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def harness() -> EngineHarness:
    return EngineHarness()
