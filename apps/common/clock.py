"""
Time source for the billing lifecycle.

Services take a ``clock`` so that threshold edges (exactly three days left,
an end date one second in the past) can be exercised deterministically.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from django.utils import timezone


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock backed by django.utils.timezone (aware datetimes)."""

    def now(self) -> datetime:
        return timezone.now()


class FrozenClock:
    """Settable clock for tests and replays."""

    def __init__(self, current: datetime | None = None):
        self.current = current or timezone.now()

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current


system_clock = SystemClock()
