# compliance_engine/due_dates.py
# ------------------------------------------------------------
# Due-date calculator for taskTemplate.dueDateConfig
# - types: fixed | relative | calculated | recurring
# - "calculated" dispatches to a named strategy (registry below)
# - any failure -> today + default offset, plus a diagnostic
# ------------------------------------------------------------

import datetime as dt
from typing import Any, Callable, Dict, List, Optional

from .conditions import resolve_path
from .config import get_settings
from .errors import RuleEngineError, DATE_CALCULATION_FAILED
from .logging_config import logger
from .time_engine import (
    add_months, apply_offset, next_business_day, skip_holidays, to_date, today as _today,
)

DEFAULT_UNEMPLOYMENT_ALLOWANCE = 90


def _required_date(ctx: Dict[str, Any], path: str, purpose: str) -> dt.date:
    d = to_date(resolve_path(ctx, path))
    if d is None:
        raise RuleEngineError(f"{purpose} requires {path}", DATE_CALCULATION_FAILED)
    return d


# ------------ named strategies ------------
def passport_renewal_urgent(ctx, on):
    # renew 6 months ahead of expiry; already inside that window -> two weeks from today
    expiry = _required_date(ctx, "dates.passportExpiryDate", "Passport renewal calculation")
    deadline = add_months(expiry, -6)
    return apply_offset(on, "+14days") if on >= deadline else deadline


def opt_application_window(ctx, on):
    # window opens 90 days before graduation; once open -> apply within a week
    grad = _required_date(ctx, "dates.graduationDate", "OPT calculation")
    opens = apply_offset(grad, "-90days")
    return apply_offset(on, "+7days") if on >= opens else opens


def stem_extension_deadline(ctx, on):
    opt_end = _required_date(ctx, "dates.optEndDate", "STEM extension calculation")
    return apply_offset(opt_end, "-90days")


def unemployment_grace_end(ctx, on):
    ended = _required_date(ctx, "dates.employmentEndDate", "Unemployment calculation")
    allowance = resolve_path(ctx, "employment.maxUnemploymentDays")
    if not isinstance(allowance, int) or isinstance(allowance, bool) or allowance <= 0:
        allowance = DEFAULT_UNEMPLOYMENT_ALLOWANCE
    return ended + dt.timedelta(days=allowance)


def address_update_deadline(ctx, on):
    moved = to_date(resolve_path(ctx, "location.lastMoved")) or to_date(resolve_path(ctx, "dates.lastMoved"))
    if moved is None:
        return apply_offset(on, "+3days")
    return apply_offset(moved, "+10days")


DUE_DATE_STRATEGIES: Dict[str, Callable[[Dict[str, Any], dt.date], dt.date]] = {
    "passport_renewal_urgent": passport_renewal_urgent,
    "opt_application_window":  opt_application_window,
    "stem_extension_deadline": stem_extension_deadline,
    "unemployment_grace_end":  unemployment_grace_end,
    "address_update_deadline": address_update_deadline,
}


# ------------ config types ------------
def _fixed(config, ctx, on):
    d = to_date(config.get("baseDate"))
    if d is None:
        raise RuleEngineError(f"Invalid base date: {config.get('baseDate')!r}", DATE_CALCULATION_FAILED)
    return d


def _relative(config, ctx, on):
    base, offset = config.get("baseDate"), config.get("offset")
    if not base or not offset:
        raise RuleEngineError("Relative date calculation requires baseDate and offset", DATE_CALCULATION_FAILED)
    base_date = on if base == "today" else _required_date(ctx, base, "Relative date calculation")
    return apply_offset(base_date, offset)


def _calculated(config, ctx, on):
    name = config.get("calculation")
    strategy = DUE_DATE_STRATEGIES.get(name)
    if strategy is None:
        raise RuleEngineError(f"Unknown calculation logic: {name}", DATE_CALCULATION_FAILED)
    return strategy(ctx, on)


def _recurring(config, ctx, on):
    pattern = config.get("calculation")
    if not pattern or not isinstance(pattern, str):
        raise RuleEngineError("Recurring date calculation requires a pattern", DATE_CALCULATION_FAILED)
    if pattern == "monthly":
        return add_months(on.replace(day=1), 1)
    if pattern == "quarterly":
        return add_months(dt.date(on.year, (on.month - 1) // 3 * 3 + 1, 1), 3)
    if pattern == "semi-annually":
        return add_months(on, 6)
    if pattern == "yearly":
        return add_months(on, 12)
    return apply_offset(on, pattern if pattern[:1] in "+-" else "+" + pattern)


DATE_TYPES = {
    "fixed": _fixed,
    "relative": _relative,
    "calculated": _calculated,
    "recurring": _recurring,
}


def _constrain(d: dt.date, config: Dict[str, Any]) -> dt.date:
    if config.get("businessDaysOnly"):
        d = next_business_day(d)
    if config.get("excludeHolidays"):
        d = skip_holidays(d)
    low, high = to_date(config.get("minDate")), to_date(config.get("maxDate"))
    if low and d < low:
        d = low
    if high and d > high:
        d = high
    return d


def calculate_due_date(config: Optional[Dict[str, Any]], context: Dict[str, Any],
                       today: Optional[dt.date] = None,
                       diagnostics: Optional[List[str]] = None,
                       default_offset_days: Optional[int] = None) -> dt.date:
    """
    Resolve a dueDateConfig to a date. Never raises: an unknown type/strategy or
    missing profile data falls back to today + default offset and records why.
    """
    on = today or _today()
    try:
        if not isinstance(config, dict):
            raise RuleEngineError("Missing dueDateConfig", DATE_CALCULATION_FAILED)
        handler = DATE_TYPES.get(config.get("type"))
        if handler is None:
            raise RuleEngineError(f"Unsupported date calculation type: {config.get('type')}", DATE_CALCULATION_FAILED)
        return _constrain(handler(config, context, on), config)
    except RuleEngineError as ex:
        days = default_offset_days if default_offset_days is not None else get_settings().default_due_offset_days
        message = f"Date calculation failed ({ex.message}); defaulting to {days} days from today"
        logger.warning(message)
        if diagnostics is not None:
            diagnostics.append(message)
        return on + dt.timedelta(days=days)
