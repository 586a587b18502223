"""Shared fixtures for CRM sync layer tests.

Provides Settings with zero request spacing and zero retry delay so provider
tests run without waiting. Builders and fakes live in tests/helpers.py.
"""

from __future__ import annotations

import pytest

from src.zenith.config import Settings


@pytest.fixture
def settings() -> Settings:
    """Settings that never sleep and never read the developer's .env."""
    return Settings(
        _env_file=None,
        AIRTABLE_API_KEY="",
        AIRTABLE_BASE_ID="",
        CRM_MIN_REQUEST_INTERVAL_MS=0,
        CRM_RETRY_BASE_DELAY=0.0,
    )
