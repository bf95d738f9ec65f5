from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from ..analysis.start_time import JST


@dataclass(frozen=True)
class JstRange:
    start: datetime
    end: datetime  # exclusive
    start_date: str
    end_date: str

    @property
    def start_utc(self) -> datetime:
        return self.start.astimezone(timezone.utc)

    @property
    def end_utc(self) -> datetime:
        return self.end.astimezone(timezone.utc)

    @property
    def start_iso(self) -> str:
        return self.start_utc.isoformat()

    @property
    def end_iso(self) -> str:
        return self.end_utc.isoformat()


def _jst_midnight(day: date) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=JST)


def build_jst_range(start: Optional[str] = None, end: Optional[str] = None, *, now: Optional[datetime] = None) -> JstRange:
    """
    Whole JST days from `start` through `end` (YYYY-MM-DD, both inclusive).

    Missing `start` means today in JST; missing `end` means `start`; an `end`
    before `start` is clamped to `start`. Raises ValueError on malformed dates.
    """
    today = (now or datetime.now(timezone.utc)).astimezone(JST).date()

    start_day = date.fromisoformat(start) if start else today
    end_day = date.fromisoformat(end) if end else start_day
    if end_day < start_day:
        end_day = start_day

    return JstRange(
        start=_jst_midnight(start_day),
        end=_jst_midnight(end_day) + timedelta(days=1),
        start_date=start_day.isoformat(),
        end_date=end_day.isoformat(),
    )
