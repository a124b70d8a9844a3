# compliance_engine/rules_engine.py
# ------------------------------------------------------------
# Rule library + selection + task assembly
# - JSON rule sets in /rulesets, one file per visa family
# - a file is loaded whole or not at all (errors reported via /rules/reload)
# - the loaded library is a frozen snapshot swapped on reload
# - matched rules -> tasks, ranked by priority then soft dependencies
# ------------------------------------------------------------

import copy
import datetime as dt
import json
import os
import uuid
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple

from .conditions import evaluate_conditions
from .config import Settings, get_settings
from .due_dates import calculate_due_date
from .errors import RuleEngineError, DEPENDENCY_CYCLE_DETECTED
from .logging_config import logger
from .profile import normalize_profile, user_id, user_phases, visa_type
from .rule_validator import (
    analyze_rule_set, schema_errors, validate_rule_set, validate_template_placeholders,
)
from .templates import render_template
from .time_engine import today as _today

GENERAL_PHASE = "general"
TASK_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "compliance-engine/tasks")


# ------------ rule library ------------
class _Snapshot(NamedTuple):
    rules: Tuple[Dict[str, Any], ...]
    by_id: Mapping[str, Dict[str, Any]]


_EMPTY = _Snapshot((), MappingProxyType({}))


class RuleLibrary:
    """
    Holds the validated rules. Readers always see one complete snapshot:
    reload builds a new one off to the side and swaps the reference.
    """

    def __init__(self, rules_dir: Optional[str] = None):
        self.rules_dir = rules_dir
        self._snapshot = _EMPTY
        self.errors: List[Dict[str, Any]] = []
        self.warnings: List[Dict[str, Any]] = []
        self.files: Dict[str, int] = {}
        self.loaded_at: Optional[dt.datetime] = None

    @classmethod
    def from_rule_sets(cls, rule_sets: Iterable[Dict[str, Any]]) -> "RuleLibrary":
        lib = cls()
        lib._install([(f"<memory:{i}>", obj) for i, obj in enumerate(rule_sets)])
        return lib

    @property
    def rules(self) -> Tuple[Dict[str, Any], ...]:
        return self._snapshot.rules

    def get(self, rule_id: str) -> Optional[Dict[str, Any]]:
        return self._snapshot.by_id.get(rule_id)

    def __len__(self) -> int:
        return len(self._snapshot.rules)

    def ids(self) -> List[str]:
        return [r["id"] for r in self._snapshot.rules]

    def load(self) -> Dict[str, Any]:
        """Load all rule JSONs from rules_dir; bad files are skipped and reported."""
        rd = self.rules_dir or get_settings().rules_dir
        sources: List[Tuple[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        if not os.path.isdir(rd):
            errors.append({"file": rd, "error": "Rules directory not found"})
        else:
            for fname in sorted(os.listdir(rd)):
                if not fname.lower().endswith(".json"):
                    continue
                path = os.path.join(rd, fname)
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        sources.append((fname, json.load(f)))
                except (OSError, ValueError) as ex:
                    errors.append({"file": fname, "error": f"JSON parse error: {ex}"})

        return self._install(sources, errors)

    reload = load

    def _install(self, sources: List[Tuple[str, Any]],
                 errors: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        errors = errors if errors is not None else []
        warnings: List[Dict[str, Any]] = []
        accepted: List[Dict[str, Any]] = []
        by_id: Dict[str, Dict[str, Any]] = {}
        files: Dict[str, int] = {}

        for fname, obj in sources:
            rules = self._check_file(fname, obj, by_id, errors, warnings)
            if rules is None:
                continue
            for rule in rules:
                accepted.append(rule)
                by_id[rule["id"]] = rule
            files[fname] = len(rules)
            logger.info("Loaded %d rules from %s", len(rules), fname)

        self._snapshot = _Snapshot(tuple(accepted), MappingProxyType(by_id))
        self.errors = errors
        self.warnings = warnings
        self.files = files
        self.loaded_at = dt.datetime.now(dt.timezone.utc)
        for err in errors:
            logger.warning("Rule file %s rejected: %s", err["file"], err["error"])

        return {
            "count": len(accepted),
            "ids": [r["id"] for r in accepted],
            "files": files,
            "errors": errors,
            "warnings": warnings,
        }

    @staticmethod
    def _check_file(fname: str, obj: Any, loaded: Dict[str, Dict[str, Any]],
                    errors: List[Dict[str, Any]], warnings: List[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
        if not isinstance(obj, dict):
            errors.append({"file": fname, "error": "Top-level JSON must be an object"})
            return None
        if (obj.get("ruleSet") or {}).get("disabled") is True:
            errors.append({"file": fname, "error": "Rule set disabled via 'disabled': true (skipped)"})
            return None

        problems = schema_errors(obj) + validate_rule_set(obj)["errors"]
        if problems:
            errors.extend({"file": fname, "error": p} for p in problems)
            return None

        clashes = [r["id"] for r in obj["rules"] if r["id"] in loaded]
        if clashes:
            for rid in clashes:
                errors.append({"file": fname, "error": f"Duplicate rule id '{rid}' (already loaded)"})
            return None

        for rule in obj["rules"]:
            for issue in validate_template_placeholders(rule)["issues"]:
                warnings.append({"file": fname, "rule": rule["id"], "warning": issue})
        return copy.deepcopy(obj["rules"])

    def analysis(self) -> Dict[str, Any]:
        return analyze_rule_set({"rules": list(self.rules)})


# ------------ selection ------------
def rule_phases(rule: Dict[str, Any]) -> List[str]:
    phase = rule.get("phase")
    if isinstance(phase, list):
        return [p for p in phase if isinstance(p, str)]
    return [phase] if isinstance(phase, str) else []


def select_candidate_rules(rules: Iterable[Dict[str, Any]], profile: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Rules that apply to this user before any condition is tested:
    active, visa type listed, phase shared (or the rule is 'general'),
    and university-scoped rules only for that university. Library order is kept.
    """
    visa = visa_type(profile)
    phases = set(user_phases(profile))
    university = (profile.get("academic") or {}).get("universityId")
    out = []
    for rule in rules:
        if rule.get("isActive", True) is False:
            continue
        if visa not in [str(v).upper() for v in rule.get("visaTypes") or []]:
            continue
        rp = rule_phases(rule)
        if GENERAL_PHASE not in rp and not phases.intersection(rp):
            continue
        scope = rule.get("universitySpecific")
        if scope and scope != university:
            continue
        out.append(rule)
    return out


# ------------ task assembly ------------
def task_id(rule_id: str, uid: str) -> str:
    """Stable per (user, rule): regenerating for the same user yields the same id."""
    return f"{rule_id}-{uuid.uuid5(TASK_NAMESPACE, f'{uid}:{rule_id}').hex[:8]}"


def effective_template(rule: Dict[str, Any], profile: Dict[str, Any], use_overrides: bool = True) -> Dict[str, Any]:
    template = rule.get("taskTemplate") or {}
    university = (profile.get("academic") or {}).get("universityId")
    overrides = (template.get("universityOverrides") or {}).get(university) if university else None
    if not use_overrides or not overrides:
        return template
    return {**template, **overrides}


def build_task(rule: Dict[str, Any], context: Dict[str, Any], on: dt.date, now: dt.datetime,
               settings: Settings, errors: Optional[List[str]] = None) -> Dict[str, Any]:
    template = effective_template(rule, context, settings.enable_university_overrides)
    notes: List[str] = []
    title = render_template(template.get("titleTemplate"), context, today=on, warnings=notes)
    description = render_template(template.get("descriptionTemplate"), context, today=on, warnings=notes)
    due_config = template.get("dueDateConfig")
    due = calculate_due_date(due_config, context, today=on, diagnostics=notes,
                             default_offset_days=settings.default_due_offset_days)
    if errors is not None:
        errors.extend(f"Rule {rule['id']}: {n}" for n in notes)

    recurring = isinstance(due_config, dict) and due_config.get("type") == "recurring"
    phases = rule_phases(rule)
    return {
        "id": task_id(rule["id"], user_id(context)),
        "title": title,
        "description": description,
        "dueDate": due,
        "completed": False,
        "category": template.get("category"),
        "phase": phases[0] if phases else GENERAL_PHASE,
        "priority": template.get("priority"),
        "createdAt": now,
        "updatedAt": now,
        "ruleId": rule["id"],
        "dependsOn": list(template.get("dependsOn") or []),
        "tags": list(rule.get("tags") or []),
        "isRecurring": recurring,
        "recurringInterval": due_config.get("calculation") if recurring else None,
        "source": "rule-engine",
    }


# ------------ ordering ------------
def order_tasks(tasks: List[Dict[str, Any]], priorities: Optional[Dict[str, float]] = None,
                use_dependencies: bool = True,
                diagnostics: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """
    Rank by rule priority (desc, stable), then pull dependencies that also fired
    ahead of their dependents. Dependencies on rules that did not fire are ignored.
    A cycle is broken by emitting the highest-ranked remaining task.
    """
    priorities = priorities or {}
    ranked = [t for _, t in sorted(enumerate(tasks),
                                   key=lambda p: (-priorities.get(p[1].get("ruleId"), 0), p[0]))]
    if not use_dependencies:
        return ranked

    fired = {t.get("ruleId") for t in ranked if t.get("ruleId")}
    pending = list(ranked)
    done = set()
    out: List[Dict[str, Any]] = []
    while pending:
        pick = None
        for i, t in enumerate(pending):
            deps = [d for d in t.get("dependsOn") or [] if d in fired and d != t.get("ruleId")]
            if all(d in done for d in deps):
                pick = i
                break
        if pick is None:
            pick = 0
            err = RuleEngineError("Dependency cycle detected among: " +
                                  ", ".join(str(t.get("ruleId")) for t in pending),
                                  DEPENDENCY_CYCLE_DETECTED, pending[0].get("ruleId"))
            logger.warning(str(err))
            if diagnostics is not None:
                diagnostics.append(err.message)
        task = pending.pop(pick)
        done.add(task.get("ruleId"))
        out.append(task)
    return out


# ------------ evaluation ------------
def evaluate_profile(rules: Iterable[Dict[str, Any]], profile: Dict[str, Any],
                     settings: Optional[Settings] = None,
                     today: Optional[dt.date] = None,
                     now: Optional[dt.datetime] = None) -> Dict[str, Any]:
    """
    Select, evaluate and assemble tasks for one profile.
    Per-rule failures are recorded in `errors` and never abort the run.
    """
    settings = settings or get_settings()
    on = today or _today(settings.timezone)
    stamp = now or dt.datetime.now(dt.timezone.utc)
    context = normalize_profile(profile)

    candidates = select_candidate_rules(rules, context)
    errors: List[str] = []
    tasks: List[Dict[str, Any]] = []
    priorities: Dict[str, float] = {}

    for rule in candidates:
        try:
            matched = evaluate_conditions(rule.get("conditions") or [], context, on, errors=errors)
            if not matched:
                logger.debug("Rule %s not matched", rule["id"])
                continue
            tasks.append(build_task(rule, context, on, stamp, settings, errors))
            priorities[rule["id"]] = rule.get("priority", 0)
            logger.debug("Rule %s matched", rule["id"])
        except RuleEngineError as ex:
            errors.append(f"Rule {rule.get('id')} evaluation failed: {ex.message}")

    ordered = order_tasks(tasks, priorities, settings.enable_dependencies, errors)
    return {
        "tasks": ordered[: settings.max_tasks_per_user],
        "rulesEvaluated": len(candidates),
        "rulesMatched": len(tasks),
        "errors": errors,
    }


def explain_rule(rule: Dict[str, Any], profile: Dict[str, Any],
                 settings: Optional[Settings] = None,
                 today: Optional[dt.date] = None) -> Dict[str, Any]:
    """Evaluate one rule with a full condition trace (no selection filters applied)."""
    settings = settings or get_settings()
    on = today or _today(settings.timezone)
    context = normalize_profile(profile)
    trace: List[Dict[str, Any]] = []
    errors: List[str] = []
    matched = evaluate_conditions(rule.get("conditions") or [], context, on, trace=trace, errors=errors)
    task = build_task(rule, context, on, dt.datetime.now(dt.timezone.utc), settings, errors) if matched else None
    return {
        "id": rule["id"],
        "applicable": bool(select_candidate_rules([rule], context)),
        "matched": matched,
        "conditions": trace,
        "task": task,
        "errors": errors,
    }
