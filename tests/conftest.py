"""Top-level pytest configuration and shared fixtures for the extraction test suite.

Environment variables are set at the top of this module *before* any src
imports so that ``get_settings()`` never picks up real credentials from the
developer's shell.

Fixture hierarchy
-----------------
settings        → Settings with fake keys for every provider
fake_clock      → Manually advanced monotonic clock
sleep_recorder  → Async stand-in for ``asyncio.sleep`` that records delays
rng             → Seeded random source for backoff jitter
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Set environment variables BEFORE any src imports.
# ---------------------------------------------------------------------------
os.environ.setdefault("OPENROUTER_API_KEY", "test_openrouter_key_not_real")
os.environ.setdefault("GROQ_API_KEY", "test_groq_key_not_real")
os.environ.setdefault("ANTHROPIC_API_KEY", "test_key_not_real")

import random

import pytest

from src.config import Settings
from tests.fixtures.provider_doubles import FakeClock, SleepRecorder, make_settings


@pytest.fixture
def settings() -> Settings:
    """Provide Settings with fake keys for all three providers.

    Backoff is the production schedule (2000 ms base, 1000 ms jitter,
    10000 ms cap); tests never really sleep because ``sleep_recorder``
    replaces ``asyncio.sleep``.
    """
    return make_settings()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep_recorder(fake_clock: FakeClock) -> SleepRecorder:
    """Record backoff delays and advance ``fake_clock`` by each one."""
    return SleepRecorder(fake_clock)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)
