"""Injectable clocks so rendered output never reads wall-clock time directly."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant."""

    def now(self) -> datetime:
        """Return the current timezone-aware instant."""


class SystemClock:
    """Clock backed by the system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class FixedClock:
    """Clock that always returns the same instant."""

    instant: datetime

    def now(self) -> datetime:
        return self.instant
