# compliance_engine/time_engine.py
# ------------------------------------------------------------
# Date helpers shared by conditions, templates and due dates
# - "today" is taken in the configured timezone (pytz)
# - offsets/time values: "+10days", "-90days", "6months", "1year"
# - months/years are calendar units, day clamped to month end
# ------------------------------------------------------------

import calendar
import datetime as dt
import re
from typing import Any, Optional, Tuple

import pytz

from .config import get_settings
from .errors import RuleEngineError, DATE_CALCULATION_FAILED

OFFSET_RE = re.compile(r"^([+-]?)(\d+)\s*(days?|weeks?|months?|years?)$", re.IGNORECASE)

# Fixed-date US federal holidays as (month, day)
FEDERAL_HOLIDAYS = {(1, 1), (7, 4), (11, 11), (12, 25)}


def today(tz_name: Optional[str] = None) -> dt.date:
    tz = pytz.timezone(tz_name or get_settings().timezone)
    return dt.datetime.now(tz).date()


def to_date(value: Any) -> Optional[dt.date]:
    """date / datetime / ISO string -> date. Anything else -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return dt.date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def parse_offset(text: str) -> Tuple[int, str]:
    """'-90days' -> (-90, 'day'). Raises RuleEngineError on anything unparseable."""
    if not isinstance(text, str):
        raise RuleEngineError(f"Invalid offset format: {text!r}", DATE_CALCULATION_FAILED)
    m = OFFSET_RE.match(text.strip())
    if not m:
        raise RuleEngineError(f"Invalid offset format: {text}", DATE_CALCULATION_FAILED)
    sign, amount, unit = m.groups()
    n = int(amount) * (-1 if sign == "-" else 1)
    return n, unit.lower().rstrip("s")


def add_months(d: dt.date, months: int) -> dt.date:
    idx = d.month - 1 + months
    year = d.year + idx // 12
    month = idx % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def add_years(d: dt.date, years: int) -> dt.date:
    return add_months(d, years * 12)


def apply_offset(base: dt.date, offset: str) -> dt.date:
    n, unit = parse_offset(offset)
    if unit == "day":
        return base + dt.timedelta(days=n)
    if unit == "week":
        return base + dt.timedelta(weeks=n)
    if unit == "month":
        return add_months(base, n)
    return add_years(base, n)


def days_between(start: dt.date, end: dt.date) -> int:
    """Signed whole days from start to end."""
    return (end - start).days


def format_date(value: Any) -> str:
    d = to_date(value)
    if d is None:
        return ""
    return f"{calendar.month_name[d.month]} {d.day}, {d.year}"


def format_time_remaining(days: int) -> str:
    if days < 0:
        return "Expired"
    if days == 0:
        return "Today"
    if days == 1:
        return "1 day"
    if days < 30:
        return f"{days} days"
    if days < 365:
        months = days // 30
        return "1 month" if months == 1 else f"{months} months"
    years = days // 365
    rem_months = (days % 365) // 30
    out = "1 year" if years == 1 else f"{years} years"
    if rem_months:
        out += " 1 month" if rem_months == 1 else f" {rem_months} months"
    return out


# ---------- business-day adjustments ----------
def next_business_day(d: dt.date) -> dt.date:
    """Saturday/Sunday roll forward to Monday."""
    wd = d.weekday()
    if wd == 5:
        return d + dt.timedelta(days=2)
    if wd == 6:
        return d + dt.timedelta(days=1)
    return d


def is_federal_holiday(d: dt.date) -> bool:
    return (d.month, d.day) in FEDERAL_HOLIDAYS


def skip_holidays(d: dt.date) -> dt.date:
    while is_federal_holiday(d):
        d = next_business_day(d + dt.timedelta(days=1))
    return d
