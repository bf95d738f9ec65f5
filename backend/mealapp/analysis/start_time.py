from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

JST = timezone(timedelta(hours=9))

# YYYYMMDD[_-]HHMMSS with no digit directly before or after the match
_EMBEDDED_TS = re.compile(r"(?<!\d)(\d{8})[_-]?(\d{6})(?!\d)")


def to_jst_iso(value: datetime) -> str:
    """Format a datetime as `YYYY-MM-DDTHH:MM:SS+09:00`. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(JST).replace(microsecond=0).isoformat()


def now_jst_iso(now: Optional[datetime] = None) -> str:
    return to_jst_iso(now or datetime.now(timezone.utc))


def extract_start_time_from_path(path: str, now: Optional[datetime] = None) -> str:
    """
    Derive the meal start time from a storage path.

    ".../1758123117948_20240922_083549.jpg" -> "2024-09-22T08:35:49+09:00".
    The last embedded timestamp wins; the digits are taken as local +09:00
    time without calendar validation. Without a match the current time in
    +09:00 is returned.
    """
    matches = list(_EMBEDDED_TS.finditer(path or ""))
    if not matches:
        return now_jst_iso(now)

    d8, t6 = matches[-1].group(1), matches[-1].group(2)
    return f"{d8[0:4]}-{d8[4:6]}-{d8[6:8]}T{t6[0:2]}:{t6[2:4]}:{t6[4:6]}+09:00"
