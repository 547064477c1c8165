"""Timezone-bound time source used for daily quota boundaries."""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import cast
from zoneinfo import ZoneInfo


class Clock:
    """Current time in a fixed timezone.

    Quota and rate-limit day keys are derived from ``today()``, so every
    component sharing a clock agrees on when a new day begins.
    """

    def __init__(self, tz_name: str = "UTC"):
        self.tz = cast(tzinfo, ZoneInfo(tz_name))

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> str:
        return self.now().date().isoformat()

    def seconds_until_midnight(self) -> int:
        now = self.now()
        next_midnight = datetime.combine(
            now.date() + timedelta(days=1), datetime.min.time(), tzinfo=self.tz
        )
        # compare in UTC so DST transitions are accounted for
        remaining = next_midnight.astimezone(timezone.utc) - now.astimezone(
            timezone.utc
        )
        return max(1, int(remaining.total_seconds()))

