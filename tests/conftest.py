# ===============================================================================
# PYTEST CONFIGURATION FOR KAIROS PLATFORM
# ===============================================================================
"""
Global test configuration for Kairos Platform.

Test Structure:
- tests/ mirrors apps/ structure for app-specific tests
- Naming convention: test_{app}_{feature}.py
- Shared builders live in tests/factories/

Run specific app tests: pytest tests/promotions/
"""

import os

import django


def pytest_configure():
    """Configure Django settings for pytest"""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.test')

    # Configure Django
    django.setup()


# ===============================================================================
# PYTEST FIXTURES
# ===============================================================================

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402

from apps.common.clock import FrozenClock  # noqa: E402


@pytest.fixture
def frozen_clock():
    """Clock pinned to a fixed instant"""
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))
