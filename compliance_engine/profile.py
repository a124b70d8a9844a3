# compliance_engine/profile.py
# Profile context helpers: normalisation, visa/phase accessors, fingerprint.
import copy
import hashlib
import json
from typing import Any, Dict, List

from .conditions import is_present, resolve_path
from .time_engine import to_date

DATE_SECTIONS = ("dates",)
DATE_FIELDS = ("location.lastMoved",)


def normalize_profile(profile: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy with ISO date strings under dates.* (and a few known fields) parsed to date objects."""
    ctx = copy.deepcopy(profile or {})
    for section in DATE_SECTIONS:
        block = ctx.get(section)
        if isinstance(block, dict):
            for key, value in block.items():
                if isinstance(value, str):
                    block[key] = to_date(value) or value
    for path in DATE_FIELDS:
        head, _, tail = path.rpartition(".")
        parent = resolve_path(ctx, head)
        if isinstance(parent, dict) and isinstance(parent.get(tail), str):
            parent[tail] = to_date(parent[tail]) or parent[tail]
    return ctx


def visa_type(profile: Dict[str, Any]) -> str:
    value = resolve_path(profile, "visaType")
    return value.strip().upper() if isinstance(value, str) else ""


def user_phases(profile: Dict[str, Any]) -> List[str]:
    """currentPhase plus any explicit `phases` list."""
    phases: List[str] = []
    current = resolve_path(profile, "currentPhase")
    if isinstance(current, str) and current:
        phases.append(current)
    extra = resolve_path(profile, "phases")
    if isinstance(extra, list):
        phases.extend(p for p in extra if isinstance(p, str) and p not in phases)
    return phases


def user_id(profile: Dict[str, Any]) -> str:
    for path in ("userId", "user.id", "id"):
        value = resolve_path(profile, path)
        if is_present(value) and value != "":
            return str(value)
    return "anonymous"


def fingerprint(profile: Dict[str, Any]) -> str:
    """Stable hash of the profile content (dates rendered as ISO strings)."""
    blob = json.dumps(profile, sort_keys=True, default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]
