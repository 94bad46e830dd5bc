"""Calendar helpers shared by validation, the constraint checks and queries.

Every rule in this service works on calendar-date components. Timestamps are
reduced to their date part as written (no timezone conversion) so a value
like ``2024-03-31T23:30:00-05:00`` stays on March 31st.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Any, Tuple


def month_window(day: date) -> Tuple[date, date]:
    """Return the inclusive (first, last) calendar days of ``day``'s month."""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def same_month(a: date, b: date) -> bool:
    return (a.year, a.month) == (b.year, b.month)


def coerce_calendar_date(value: Any) -> Any:
    """Reduce datetimes / ISO datetime strings to a plain ``date``.

    Anything else is returned untouched so pydantic reports its own error.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        raw = value.strip()
        if len(raw) > 10 and raw[10] in ("T", " "):
            try:
                return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
            except ValueError:
                return value
        return raw
    return value


def parse_utc_timestamp(raw: str) -> datetime:
    """Parse a stored ``...Z`` timestamp into an aware UTC datetime."""
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))
