# compliance_engine/summary.py
from typing import List, Dict, Any, Optional
import datetime as dt

from .templates import PHASE_LABELS
from .time_engine import days_between, format_date, format_time_remaining, to_date

PRIORITY_RANK = {"high": 2, "medium": 1, "low": 0}


def _due(task: Dict[str, Any]) -> Optional[dt.date]:
    return to_date(task.get("dueDate"))


def tasks_by_phase(tasks: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Group tasks by phase, keeping task order inside each group."""
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for t in tasks:
        groups.setdefault(t.get("phase") or "general", []).append(t)
    return groups


def urgent_tasks(tasks: List[Dict[str, Any]], today: dt.date, within_days: int = 7) -> List[Dict[str, Any]]:
    """Open high-priority tasks, or open tasks due within `within_days` (overdue included)."""
    out = []
    for t in tasks:
        if t.get("completed"):
            continue
        due = _due(t)
        soon = due is not None and days_between(today, due) <= within_days
        if t.get("priority") == "high" or soon:
            out.append(t)
    return out


def overdue_tasks(tasks: List[Dict[str, Any]], today: dt.date) -> List[Dict[str, Any]]:
    return [t for t in tasks if not t.get("completed") and _due(t) is not None and _due(t) < today]


def pick_top_tasks(tasks: List[Dict[str, Any]], top_n: int = 5) -> List[Dict[str, Any]]:
    ranked = sorted(
        (t for t in tasks if not t.get("completed")),
        key=lambda t: (-PRIORITY_RANK.get(t.get("priority"), 0), _due(t) or dt.date.max)
    )
    return ranked[:top_n]


def summarize(tasks: List[Dict[str, Any]], today: dt.date, top_n: int = 5) -> Dict[str, Any]:
    top = pick_top_tasks(tasks, top_n=top_n)
    lines = []
    for t in top:
        due = _due(t)
        when = format_time_remaining(days_between(today, due)) if due else "no deadline"
        lines.append(f"{t['title']} ({t.get('priority')}, due {format_date(due) or 'n/a'}, {when})")

    open_due = [d for d in (_due(t) for t in tasks if not t.get("completed")) if d and d >= today]
    return {
        "total": len(tasks),
        "completed": sum(1 for t in tasks if t.get("completed")),
        "byPriority": {p: sum(1 for t in tasks if t.get("priority") == p) for p in ("high", "medium", "low")},
        "byPhase": {PHASE_LABELS.get(k, k): len(v) for k, v in tasks_by_phase(tasks).items()},
        "urgent": [t["id"] for t in urgent_tasks(tasks, today)],
        "overdue": [t["id"] for t in overdue_tasks(tasks, today)],
        "nextDeadline": min(open_due) if open_due else None,
        "top_tasks": top,
        "summary_lines": lines,
    }
