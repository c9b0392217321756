"""
AlarmWindow: lower bound of the next alarm query, as an immutable value.

The first query looks back ALARM_CATCH_UP_MINUTES. Every query after the
first advance looks back ALARM_LOOK_BACK_MINUTES from the end of the previous
one, so consecutive windows overlap and late-reported alarms are still seen;
the deduplicator absorbs the repeats.

No wall clock is read here: callers pass "now".
"""
from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta

from .const import ALARM_CATCH_UP_MINUTES, ALARM_LOOK_BACK_MINUTES


@dataclasses.dataclass(frozen=True)
class AlarmWindow:

    lower_bound: datetime
    catching_up: bool = True

    @classmethod
    def start(cls, now: datetime) -> AlarmWindow:
        """Window for the first poll after startup."""
        return cls(lower_bound=now - timedelta(minutes=ALARM_CATCH_UP_MINUTES))

    def next_window(self, now: datetime) -> tuple[datetime, datetime]:
        """Return (from, till) for a query issued at now; from never exceeds till."""
        return min(self.lower_bound, now), now

    def advance(self, till: datetime) -> AlarmWindow:
        """Window after a query ending at till succeeded. The lower bound never moves back."""
        candidate = till - timedelta(minutes=ALARM_LOOK_BACK_MINUTES)
        return AlarmWindow(lower_bound=max(self.lower_bound, candidate), catching_up=False)
