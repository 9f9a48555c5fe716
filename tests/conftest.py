"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that `import chatrelay`
works consistently in all tests, and provides the common fixtures.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from chatrelay.provider import sdk_selector  # noqa: E402
from chatrelay.settings import settings  # noqa: E402
from tests.utils import (  # noqa: E402
    STUB_VENDOR,
    StubDriver,
    build_test_registry,
    make_session_factory,
)


@pytest.fixture()
def session_factory():
    engine, SessionLocal = make_session_factory()
    yield SessionLocal
    engine.dispose()


@pytest.fixture()
def registry():
    return build_test_registry()


@pytest.fixture()
def stub_driver(monkeypatch):
    driver = StubDriver()
    monkeypatch.setitem(sdk_selector.SDK_DRIVERS, STUB_VENDOR, driver.as_sdk_driver())
    return driver


@pytest.fixture()
def shared_keys(monkeypatch):
    """Only OpenRouter has an operator key; OpenAI must come from the user."""
    monkeypatch.setattr(settings, "openrouter_api_key", "sk-shared-openrouter")
    monkeypatch.setattr(settings, "openai_api_key", "")
    monkeypatch.setattr(settings, "gemini_api_key", "")
    monkeypatch.setattr(settings, "anthropic_api_key", "")
    monkeypatch.setattr(settings, "checkpoint_interval", 10)
    monkeypatch.setattr(settings, "relay_max_duration_seconds", 30.0)
    return settings
