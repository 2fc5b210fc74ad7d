from __future__ import annotations

import calendar
import time
from datetime import datetime, timezone


def now_ts() -> int:
    return int(time.time())


def utcnow() -> datetime:
    # Naive UTC; the DateTime columns carry no zone on either backend.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(dt: datetime, months: int = 1) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)
