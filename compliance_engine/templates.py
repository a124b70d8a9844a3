# compliance_engine/templates.py
# ------------------------------------------------------------
# Task template expansion
#   {path.to.field}        direct profile lookup
#   {#calculation_name}    value from the calculation registry
#   {?cond:trueText:falseText}  inline conditional
# Unresolvable placeholders render as "" and never raise.
# ------------------------------------------------------------

import datetime as dt
import re
from typing import Any, Callable, Dict, List, Optional

from .conditions import MISSING, is_present, resolve_path
from .due_dates import address_update_deadline
from .logging_config import logger
from .time_engine import apply_offset, days_between, format_date, format_time_remaining, to_date, today as _today

DIRECT_RE = re.compile(r"\{([^{}#?]+)\}")
CALCULATED_RE = re.compile(r"\{#([^{}]+)\}")
CONDITIONAL_RE = re.compile(r"\{\?([^{}]+)\}")
# one pass over all three forms so substituted values are never re-expanded
PLACEHOLDER_RE = re.compile(r"\{(\?[^{}]+|#[^{}]+|[^{}#?]+)\}")

INLINE_OPERATORS = (">=", "<=", "==", "!=", ">", "<")

DEFAULT_UNEMPLOYMENT_ALLOWANCE = 90

PHASE_LABELS: Dict[str, str] = {
    "pre_arrival": "Pre-Arrival",
    "initial_entry": "Initial Entry",
    "during_program": "During Program",
    "pre_graduation": "Pre-Graduation",
    "post_graduation": "Post-Graduation",
    "opt_application": "OPT Application",
    "opt_active": "On OPT",
    "stem_application": "STEM Extension Application",
    "stem_active": "On STEM OPT",
    "status_change": "Status Change",
    "departure_prep": "Departure Preparation",
    "general": "General",
}

URGENCY_INDICATORS = {"low": "🟢", "medium": "🟡", "high": "🟠", "critical": "🔴"}


# ------------ context lookup ------------
def lookup(context: Dict[str, Any], path: str) -> Any:
    """Profile lookup; a leading 'user.' is optional."""
    path = path.strip()
    value = resolve_path(context, path)
    if value is MISSING and path.startswith("user."):
        value = resolve_path(context, path[len("user."):])
    return value


def format_value(value: Any) -> str:
    if not is_present(value):
        return ""
    if isinstance(value, (dt.date, dt.datetime)):
        return format_date(value)
    return str(value)


# ------------ calculations ------------
def _days_until(field: str) -> Callable[[Dict[str, Any], dt.date], Optional[int]]:
    def calc(ctx: Dict[str, Any], on: dt.date) -> Optional[int]:
        d = to_date(resolve_path(ctx, field))
        return days_between(on, d) if d else None
    calc.__name__ = f"days_until_{field.split('.')[-1]}"
    return calc


def calc_unemployment_days_remaining(ctx, on):
    used = resolve_path(ctx, "employment.unemploymentDaysUsed")
    if not isinstance(used, (int, float)) or isinstance(used, bool):
        return None
    allowance = resolve_path(ctx, "employment.maxUnemploymentDays")
    if not isinstance(allowance, (int, float)) or isinstance(allowance, bool) or allowance <= 0:
        allowance = DEFAULT_UNEMPLOYMENT_ALLOWANCE
    return max(0, int(allowance - used))


def calc_time_remaining_friendly(ctx, on):
    d = to_date(resolve_path(ctx, "dates.passportExpiryDate"))
    return format_time_remaining(days_between(on, d)) if d else "Unknown"


def calc_urgency_level(ctx, on):
    risk = resolve_path(ctx, "compliance.riskScore")
    risk = risk if isinstance(risk, (int, float)) and not isinstance(risk, bool) else 0
    if risk >= 80:
        return "critical"
    if risk >= 60:
        return "high"
    if risk >= 30:
        return "medium"
    return "low"


def calc_urgency_indicator(ctx, on):
    return URGENCY_INDICATORS[calc_urgency_level(ctx, on)]


def calc_visa_status_summary(ctx, on):
    visa = resolve_path(ctx, "visaType")
    phase = resolve_path(ctx, "currentPhase")
    if not is_present(visa):
        return None
    label = PHASE_LABELS.get(phase, phase) if is_present(phase) else "General"
    return f"{visa} - {label}"


def calc_next_important_date(ctx, on):
    fields = ("graduationDate", "optEndDate", "passportExpiryDate", "visaExpiryDate")
    upcoming = [d for d in (to_date(resolve_path(ctx, f"dates.{f}")) for f in fields) if d and d > on]
    return format_date(min(upcoming)) if upcoming else None


def calc_compliance_score(ctx, on):
    risk = resolve_path(ctx, "compliance.riskScore")
    risk = risk if isinstance(risk, (int, float)) and not isinstance(risk, bool) else 0
    return max(0, 100 - risk)


def calc_address_update_deadline(ctx, on):
    return format_date(address_update_deadline(ctx, on))


def calc_job_reporting_deadline(ctx, on):
    start = to_date(resolve_path(ctx, "dates.employmentStartDate"))
    return format_date(apply_offset(start, "+10days")) if start else None


# Registry of {#...} calculations: name -> fn(profile, today)
CALCULATIONS: Dict[str, Callable[[Dict[str, Any], dt.date], Any]] = {
    "days_until_graduation":       _days_until("dates.graduationDate"),
    "days_until_opt_expiry":       _days_until("dates.optEndDate"),
    "days_until_passport_expiry":  _days_until("dates.passportExpiryDate"),
    "days_until_expiry":           _days_until("dates.passportExpiryDate"),
    "days_until_visa_expiry":      _days_until("dates.visaExpiryDate"),
    "days_until_i20_expiry":       _days_until("dates.i20ExpiryDate"),
    "unemployment_days_remaining": calc_unemployment_days_remaining,
    "time_remaining_friendly":     calc_time_remaining_friendly,
    "urgency_level":               calc_urgency_level,
    "urgency_indicator":           calc_urgency_indicator,
    "visa_status_summary":         calc_visa_status_summary,
    "next_important_date":         calc_next_important_date,
    "compliance_score":            calc_compliance_score,
    "address_update_deadline":     calc_address_update_deadline,
    "job_reporting_deadline":      calc_job_reporting_deadline,
}


# ------------ inline conditionals ------------
def _literal(text: str) -> Any:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    low = text.lower()
    if low == "true":
        return True
    if low == "false":
        return False
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def _inline_compare(left: Any, op: str, right: Any) -> bool:
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    if not is_present(left):
        return False
    try:
        if op == ">=":
            return left >= right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left < right
    except TypeError:
        return False


def inline_condition(expr: str, context: Dict[str, Any]) -> bool:
    expr = expr.strip()
    if expr.startswith("!"):
        value = lookup(context, expr[1:])
        return not (is_present(value) and bool(value))
    for op in INLINE_OPERATORS:
        if op in expr:
            left, right = expr.split(op, 1)
            value = lookup(context, left)
            return _inline_compare(value if is_present(value) else None, op, _literal(right))
    value = lookup(context, expr)
    return is_present(value) and bool(value)


# ------------ rendering ------------
def render_template(template: Optional[str], context: Dict[str, Any],
                    calculations: Optional[Dict[str, Callable]] = None,
                    today: Optional[dt.date] = None,
                    warnings: Optional[List[str]] = None) -> str:
    """Expand every placeholder in `template`. Text without placeholders is returned unchanged."""
    if not template:
        return template or ""
    registry = CALCULATIONS if calculations is None else calculations
    on = today or _today()

    def _warn(message: str) -> None:
        logger.warning(message)
        if warnings is not None:
            warnings.append(message)

    def _sub(match: "re.Match[str]") -> str:
        body = match.group(1)
        if body.startswith("?"):
            parts = body[1:].split(":", 2)
            if len(parts) != 3:
                _warn(f"Invalid conditional placeholder: {{{body}}}")
                return ""
            cond, when_true, when_false = parts
            return when_true if inline_condition(cond, context) else when_false
        if body.startswith("#"):
            name = body[1:].strip()
            fn = registry.get(name) or registry.get(name.lower())
            if fn is None:
                _warn(f"Unknown calculation: {name}")
                return ""
            try:
                value = fn(context, on)
            except (TypeError, ValueError, ArithmeticError) as ex:
                _warn(f"Calculation {name} failed: {ex}")
                return ""
            return "N/A" if value is None else format_value(value)
        return format_value(lookup(context, body))

    return PLACEHOLDER_RE.sub(_sub, template)
