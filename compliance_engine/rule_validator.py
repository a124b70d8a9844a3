# compliance_engine/rule_validator.py
# ------------------------------------------------------------
# Structural validation + linting for rule definitions
# - validate_rule / validate_rule_set return {"valid", "errors"}
# - coarse JSON-schema check for whole ruleset files
# - placeholder extraction and the placeholder lint heuristics
# ------------------------------------------------------------

import re
from typing import Any, Dict, List

from jsonschema import Draft7Validator

from .conditions import KNOWN_OPERATORS, LOGIC_OPERATORS
from .templates import CALCULATED_RE, CONDITIONAL_RE, DIRECT_RE

TASK_PRIORITIES = ("low", "medium", "high")
TASK_CATEGORIES = ("immigration", "employment", "reporting", "travel", "academic", "financial", "personal")
URGENT_TAGS = {"urgent", "critical", "high", "deadline"}

_TAG_RE = re.compile(r"^[a-z0-9-]+$")
_ID_RE = re.compile(r"^[a-z0-9]+-[a-z0-9-]+$")
_VERSION_RE = re.compile(r"^\d+\.\d+$")

_CONDITION_SCHEMA = {
    "type": "object",
    "properties": {
        "field": {"type": "string"},
        "operator": {"type": "string"},
        "timeValue": {"type": "string"},
        "logicOperator": {"type": "string"},
        "negate": {"type": "boolean"},
        "nested": {"type": "array", "items": {"$ref": "#/definitions/condition"}},
    },
}

RULESET_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Compliance RuleSet",
    "type": "object",
    "required": ["ruleSet", "rules"],
    "definitions": {"condition": _CONDITION_SCHEMA},
    "properties": {
        "ruleSet": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "description": {"type": "string"},
                "version": {"type": "string"},
                "lastUpdated": {"type": "string"},
            },
        },
        "rules": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "ruleGroup": {"type": "string"},
                    "phase": {"type": ["string", "array"], "items": {"type": "string"}},
                    "visaTypes": {"type": "array", "items": {"type": "string"}},
                    "priority": {"type": "number"},
                    "conditions": {"type": "array", "items": {"$ref": "#/definitions/condition"}},
                    "taskTemplate": {"type": "object"},
                    "isActive": {"type": "boolean"},
                    "universitySpecific": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                    "version": {"type": "string"},
                },
            },
        },
    },
}

_SCHEMA_VALIDATOR = Draft7Validator(RULESET_SCHEMA)


def schema_errors(ruleset: Any) -> List[str]:
    """JSON-schema problems, formatted as 'path: message'."""
    out: List[str] = []
    for err in sorted(_SCHEMA_VALIDATOR.iter_errors(ruleset), key=lambda e: list(e.path)):
        where = "/".join(str(p) for p in err.path) or "<root>"
        out.append(f"Schema: {where}: {err.message}")
    return out


# ------------ single rule ------------
def _validate_condition(cond: Any, label: str, errors: List[str]) -> None:
    if not isinstance(cond, dict):
        errors.append(f"{label} must be an object")
        return
    if isinstance(cond.get("nested"), list):
        nested = cond["nested"]
        if not nested:
            errors.append(f"{label} has an empty nested group")
        logic = cond.get("logicOperator")
        if not logic:
            errors.append(f"{label} with nested group must specify a logicOperator (AND/OR)")
        elif logic not in LOGIC_OPERATORS:
            errors.append(f"{label} logicOperator must be AND or OR")
        if cond.get("field") or cond.get("operator") or "value" in cond or "timeValue" in cond:
            errors.append(f'{label} must not mix "field/operator/value/timeValue" with "nested" group')
        for j, child in enumerate(nested):
            _validate_condition(child, f"{label} nested condition {j}", errors)
        return
    if not cond.get("field"):
        errors.append(f"{label} must have a field")
    if not cond.get("operator"):
        errors.append(f"{label} must have an operator")


def validate_rule(rule: Any) -> Dict[str, Any]:
    """Pure structural check; every violation becomes one error string."""
    errors: List[str] = []
    if not isinstance(rule, dict):
        return {"valid": False, "errors": ["Rule must be an object"]}

    if not rule.get("id") or not isinstance(rule.get("id"), str):
        errors.append("Rule must have a valid string id")
    if not rule.get("name") or not isinstance(rule.get("name"), str):
        errors.append("Rule must have a valid name")

    conditions = rule.get("conditions")
    if not isinstance(conditions, list) or not conditions:
        errors.append("Rule must have at least one condition")
    template = rule.get("taskTemplate")
    if not template:
        errors.append("Rule must have a taskTemplate")
    visa_types = rule.get("visaTypes")
    if not isinstance(visa_types, list) or not visa_types:
        errors.append("Rule must specify applicable visa types")

    priority = rule.get("priority")
    if isinstance(priority, bool) or not isinstance(priority, (int, float)) or not 0 <= priority <= 100:
        errors.append("Priority must be a number between 0 and 100")

    if isinstance(template, dict) and template:
        if not template.get("titleTemplate"):
            errors.append("Task template must have a titleTemplate")
        if not template.get("descriptionTemplate"):
            errors.append("Task template must have a descriptionTemplate")
        if template.get("priority") not in TASK_PRIORITIES:
            errors.append("Task template priority must be low, medium, or high")
    elif template:
        errors.append("Rule must have a taskTemplate")

    if isinstance(conditions, list):
        for i, cond in enumerate(conditions):
            _validate_condition(cond, f"Condition {i}", errors)

    return {"valid": not errors, "errors": errors}


# ------------ rule sets ------------
def validate_rule_set(ruleset: Any) -> Dict[str, Any]:
    errors: List[str] = []
    if not isinstance(ruleset, dict):
        return {"valid": False, "errors": ["Rule set must be an object"]}

    meta = ruleset.get("ruleSet")
    if not isinstance(meta, dict) or not meta.get("name"):
        errors.append("Rule set must have a name")

    rules = ruleset.get("rules")
    if not isinstance(rules, list):
        errors.append("Rule set must contain an array of rules")
        return {"valid": False, "errors": errors}

    seen = set()
    for index, rule in enumerate(rules):
        rid = rule.get("id") if isinstance(rule, dict) else None
        if rid in seen:
            errors.append(f"Duplicate rule ID found: {rid}")
        if rid is not None:
            seen.add(rid)
        res = validate_rule(rule)
        if not res["valid"]:
            errors.append(f"Rule {index} ({rid}): {', '.join(res['errors'])}")

    return {"valid": not errors, "errors": errors}


# ------------ placeholders ------------
def extract_placeholders(template: str) -> List[str]:
    """Bodies of {x}, {#x} and {?x} placeholders, de-duplicated, in discovery order."""
    if not template:
        return []
    found: List[str] = []
    for pattern in (DIRECT_RE, CALCULATED_RE, CONDITIONAL_RE):
        found.extend(m.group(1) for m in pattern.finditer(template))
    return list(dict.fromkeys(found))


def validate_template_placeholders(rule: Dict[str, Any]) -> Dict[str, Any]:
    """
    Lint, not a gate. Flags:
      - placeholders mentioning 'user.' somewhere other than the start
      - dotless snake_case names written as {name} with no {#name} anywhere
    """
    template = rule.get("taskTemplate") or {}
    title = template.get("titleTemplate") or ""
    desc = template.get("descriptionTemplate") or ""
    issues: List[str] = []

    for ph in extract_placeholders(title) + extract_placeholders(desc):
        if "user." in ph and not ph.startswith("user."):
            issues.append(f"Potential typo in placeholder: {ph}")
        if "." not in ph and "_" in ph:
            plain = f"{{{ph}}}" in title or f"{{{ph}}}" in desc
            prefixed = f"{{#{ph}}}" in title or f"{{#{ph}}}" in desc
            if plain and not prefixed:
                issues.append(f"Calculated placeholder missing # prefix: {ph}")

    return {"valid": not issues, "issues": issues}


def check_rule_conventions(rule: Dict[str, Any]) -> List[str]:
    """Data-quality conventions (ids, tags, versions, urgency tags). Advisory only."""
    notes: List[str] = []
    rid = rule.get("id", "?")
    if isinstance(rule.get("id"), str) and not _ID_RE.match(rule["id"]):
        notes.append(f"{rid}: id should be kebab-case")
    tags = rule.get("tags") or []
    if not tags:
        notes.append(f"{rid}: rule has no tags")
    for tag in tags:
        if not isinstance(tag, str) or not _TAG_RE.match(tag):
            notes.append(f"{rid}: tag {tag!r} should be lowercase kebab-case")
    priority = rule.get("priority")
    if isinstance(priority, (int, float)) and priority >= 80 and not URGENT_TAGS.intersection(tags):
        notes.append(f"{rid}: priority {priority} rule should carry one of {sorted(URGENT_TAGS)}")
    if not _VERSION_RE.match(str(rule.get("version", ""))):
        notes.append(f"{rid}: version should look like MAJOR.MINOR")
    category = (rule.get("taskTemplate") or {}).get("category")
    if category not in TASK_CATEGORIES:
        notes.append(f"{rid}: unknown task category {category!r}")

    def _ops(conds):
        for c in conds or []:
            if isinstance(c, dict) and isinstance(c.get("nested"), list):
                yield from _ops(c["nested"])
            elif isinstance(c, dict):
                yield c.get("operator")

    for op in _ops(rule.get("conditions")):
        if op and op not in KNOWN_OPERATORS:
            notes.append(f"{rid}: unknown operator {op!r}")
    return notes


# ------------ analysis ------------
def _count(values) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for v in values:
        out[v] = out.get(v, 0) + 1
    return out


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else [value]


def analyze_rule_set(ruleset: Dict[str, Any]) -> Dict[str, Any]:
    rules = ruleset.get("rules") or []
    n = len(rules)
    templates = [r.get("taskTemplate") or {} for r in rules]
    return {
        "totalRules": n,
        "rulesByGroup": _count(r.get("ruleGroup") for r in rules),
        "rulesByPhase": _count(p for r in rules for p in _as_list(r.get("phase"))),
        "rulesByVisa": _count(v for r in rules for v in r.get("visaTypes") or []),
        "priorityDistribution": _count(
            "high" if r.get("priority", 0) >= 80 else "medium" if r.get("priority", 0) >= 50 else "low"
            for r in rules
        ),
        "averagePriority": (sum(r.get("priority", 0) for r in rules) / n) if n else 0.0,
        "rulesWithDependencies": sum(1 for t in templates if t.get("dependsOn")),
        "uniqueTags": list(dict.fromkeys(tag for r in rules for tag in r.get("tags") or [])),
        "templateComplexity": {
            "avgTitleLength": (sum(len(t.get("titleTemplate") or "") for t in templates) / n) if n else 0.0,
            "avgDescLength": (sum(len(t.get("descriptionTemplate") or "") for t in templates) / n) if n else 0.0,
            "totalPlaceholders": sum(
                len(extract_placeholders(t.get("titleTemplate") or ""))
                + len(extract_placeholders(t.get("descriptionTemplate") or ""))
                for t in templates
            ),
        },
    }
