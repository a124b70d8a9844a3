# compliance_engine/conditions.py
# ------------------------------------------------------------
# Condition evaluator: leaf tests + nested AND/OR groups
# - dotted-path lookup into the profile (missing -> MISSING, never raises)
# - operator registry, one function per operator
# - timeValue compares a date field against today +/- duration
# ------------------------------------------------------------

import datetime as dt
import re
from typing import Any, Callable, Dict, List, Optional

from .errors import RuleEngineError, CONDITION_EVALUATION_FAILED
from .logging_config import logger
from .time_engine import apply_offset, to_date, today as _today


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

LOGIC_OPERATORS = ("AND", "OR")

_REGEX_MAX_LEN = 200
_DANGEROUS_REGEX = re.compile(r"(\([^)]*[+*][^)]*\)\s*[+*])|(\.\*\+)|(\+\+)|(\*\*)")


# ------------ path resolution ------------
def resolve_path(context: Any, path: str) -> Any:
    """'dates.passportExpiryDate' -> value, or MISSING if any segment is absent."""
    if not isinstance(path, str) or not path:
        return MISSING
    value = context
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return MISSING
    return value


def is_present(value: Any) -> bool:
    return value is not MISSING and value is not None


def is_group(condition: Dict[str, Any]) -> bool:
    return isinstance(condition.get("nested"), list)


# ------------ comparison helpers ------------
def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _is_date(v: Any) -> bool:
    return isinstance(v, (dt.date, dt.datetime))


def strict_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if _is_date(a) or _is_date(b):
        da, db = to_date(a), to_date(b)
        return da is not None and da == db
    if _is_number(a) and _is_number(b):
        return a == b
    return type(a) is type(b) and a == b


def _ordered(a: Any, b: Any):
    """Return a comparable (a, b) pair, or None when the types don't line up."""
    if _is_date(a) or _is_date(b):
        da, db = to_date(a), to_date(b)
        return (da, db) if da is not None and db is not None else None
    if _is_number(a) and _is_number(b):
        return a, b
    if isinstance(a, str) and isinstance(b, str):
        return a, b
    return None


def _compare(a: Any, b: Any, test: Callable[[Any, Any], bool]) -> bool:
    pair = _ordered(a, b)
    return pair is not None and test(*pair)


# ------------ operators ------------
def op_equals(actual, expected):
    return strict_equal(actual, expected)

def op_not_equals(actual, expected):
    return not strict_equal(actual, expected)

def op_less_than(actual, expected):
    return _compare(actual, expected, lambda a, b: a < b)

def op_less_than_or_equal(actual, expected):
    return _compare(actual, expected, lambda a, b: a <= b)

def op_greater_than(actual, expected):
    return _compare(actual, expected, lambda a, b: a > b)

def op_greater_than_or_equal(actual, expected):
    return _compare(actual, expected, lambda a, b: a >= b)

def op_contains(actual, expected):
    if isinstance(actual, str) and isinstance(expected, str):
        return expected.lower() in actual.lower()
    if isinstance(actual, (list, tuple)):
        return any(strict_equal(item, expected) for item in actual)
    if isinstance(actual, dict):
        return any(strict_equal(v, expected) for v in actual.values())
    return False

def op_not_contains(actual, expected):
    return not op_contains(actual, expected)

def op_in(actual, expected):
    return isinstance(expected, list) and any(strict_equal(actual, e) for e in expected)

def op_not_in(actual, expected):
    return isinstance(expected, list) and not any(strict_equal(actual, e) for e in expected)

def op_between(actual, expected):
    if not isinstance(expected, list) or len(expected) != 2:
        raise RuleEngineError("between requires a list of exactly 2 values", CONDITION_EVALUATION_FAILED)
    low, high = expected
    return op_greater_than_or_equal(actual, low) and op_less_than_or_equal(actual, high)

def op_regex(actual, expected):
    if not isinstance(expected, str):
        raise RuleEngineError(f"regex pattern must be a string: {expected!r}", CONDITION_EVALUATION_FAILED)
    if len(expected) > _REGEX_MAX_LEN:
        raise RuleEngineError("Regex pattern too long", CONDITION_EVALUATION_FAILED)
    if _DANGEROUS_REGEX.search(expected):
        raise RuleEngineError(f"Potentially unsafe regex pattern: {expected}", CONDITION_EVALUATION_FAILED)
    try:
        return re.search(expected, str(actual)) is not None
    except re.error as ex:
        raise RuleEngineError(f"Invalid regex pattern {expected}: {ex}", CONDITION_EVALUATION_FAILED)


# Registry of value operators (exists/notExists are handled before lookup)
OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals":             op_equals,
    "notEquals":          op_not_equals,
    "lessThan":           op_less_than,
    "lessThanOrEqual":    op_less_than_or_equal,
    "greaterThan":        op_greater_than,
    "greaterThanOrEqual": op_greater_than_or_equal,
    "contains":           op_contains,
    "notContains":        op_not_contains,
    "in":                 op_in,
    "notIn":              op_not_in,
    "between":            op_between,
    "regex":              op_regex,
}
PRESENCE_OPERATORS = ("exists", "notExists")
KNOWN_OPERATORS = set(OPERATORS) | set(PRESENCE_OPERATORS)


# ------------ evaluation ------------
def time_threshold(time_value: str, on: dt.date) -> dt.date:
    """'6months' -> on + 6 months; '-30days' -> on - 30 days."""
    text = time_value.strip() if isinstance(time_value, str) else time_value
    if isinstance(text, str) and text[:1] not in ("+", "-"):
        text = "+" + text
    try:
        return apply_offset(on, text)
    except RuleEngineError as ex:
        raise RuleEngineError(f"Invalid timeValue: {time_value}", CONDITION_EVALUATION_FAILED) from ex


def _leaf(condition: Dict[str, Any], context: Dict[str, Any], on: dt.date) -> Dict[str, Any]:
    field = condition.get("field")
    operator = condition.get("operator")
    expected = condition.get("value")
    time_value = condition.get("timeValue")
    actual = resolve_path(context, field)

    if operator == "exists":
        return {"passed": is_present(actual), "actual": actual, "expected": None}
    if operator == "notExists":
        return {"passed": not is_present(actual), "actual": actual, "expected": None}

    fn = OPERATORS.get(operator)
    if fn is None:
        raise RuleEngineError(f"Unsupported operator: {operator}", CONDITION_EVALUATION_FAILED)

    if not is_present(actual):
        return {"passed": False, "actual": actual, "expected": expected,
                "reason": f"Field '{field}' not present"}

    if time_value is not None:
        expected = time_threshold(time_value, on)
        actual = to_date(actual)
        if actual is None:
            return {"passed": False, "actual": resolve_path(context, field), "expected": expected,
                    "reason": f"Field '{field}' is not a date"}

    return {"passed": bool(fn(actual, expected)), "actual": actual, "expected": expected}


def evaluate_condition(condition: Dict[str, Any], context: Dict[str, Any],
                       today: Optional[dt.date] = None,
                       trace: Optional[List[Dict[str, Any]]] = None,
                       errors: Optional[List[str]] = None) -> bool:
    """
    Evaluate one condition (leaf or nested group) against a profile context.
    Never raises: evaluation problems resolve to False and are logged
    (and appended to `errors` when a list is given).
    """
    on = today or _today()

    if is_group(condition):
        children = condition["nested"]
        logic = condition.get("logicOperator") or "AND"
        child_trace: List[Dict[str, Any]] = []
        results = [evaluate_condition(c, context, on, child_trace, errors) for c in children]
        if logic == "AND":
            passed = bool(results) and all(results)
        elif logic == "OR":
            passed = any(results)
        else:
            _report(errors, f"Unsupported logic operator: {logic}")
            passed = False
        if condition.get("negate"):
            passed = not passed
        if trace is not None:
            trace.append({"condition": condition, "passed": passed, "logic": logic, "nested": child_trace})
        return passed

    try:
        res = _leaf(condition, context, on)
    except RuleEngineError as ex:
        _report(errors, f"Condition on '{condition.get('field')}' failed: {ex.message}")
        res = {"passed": False, "actual": None, "expected": condition.get("value"), "reason": ex.message}

    if trace is not None:
        reason = res.get("reason") or ("Condition met" if res["passed"] else
                                       f"Field '{condition.get('field')}' ({res['actual']!r}) "
                                       f"{condition.get('operator')} {res['expected']!r} - condition not met")
        trace.append({"condition": condition, "passed": res["passed"],
                      "actual": None if res["actual"] is MISSING else res["actual"],
                      "expected": res["expected"], "reason": reason})
    return res["passed"]


def evaluate_conditions(conditions: List[Dict[str, Any]], context: Dict[str, Any],
                        today: Optional[dt.date] = None,
                        trace: Optional[List[Dict[str, Any]]] = None,
                        errors: Optional[List[str]] = None) -> bool:
    """
    Left fold over a rule's top-level conditions: each condition after the first
    joins the accumulated result with its own logicOperator (default AND).
    An empty list never matches.
    """
    if not conditions:
        return False
    on = today or _today()
    result: Optional[bool] = None
    for cond in conditions:
        passed = evaluate_condition(cond, context, on, trace, errors)
        if result is None:
            result = passed
        elif (cond.get("logicOperator") or "AND") == "OR":
            result = result or passed
        else:
            result = result and passed
    return bool(result)


def _report(errors: Optional[List[str]], message: str) -> None:
    logger.warning(message)
    if errors is not None:
        errors.append(message)
