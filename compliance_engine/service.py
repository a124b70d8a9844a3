# compliance_engine/service.py
# ------------------------------------------------------------
# Task generation orchestrator
# - one instance per process, built with an explicit RuleLibrary
# - generate() never raises: failures degrade to the baseline checklist
# - per-user TTL cache keyed on a profile fingerprint
# - optional enhancer runs on a bounded pool behind a timeout and can only add value
# ------------------------------------------------------------

import copy
import datetime as dt
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .baseline import baseline_to_tasks, get_baseline_checklist
from .config import Settings, get_settings
from .errors import RuleEngineError, RULE_LOADING_FAILED
from .logging_config import logger
from .profile import fingerprint, user_id
from .rules_engine import RuleLibrary, evaluate_profile
from .schemas import Task
from .time_engine import today as _today

Enhancer = Callable[[List[Dict[str, Any]], Dict[str, Any]], Optional[List[Dict[str, Any]]]]


class ComplianceService:
    def __init__(self, library: RuleLibrary, settings: Optional[Settings] = None,
                 enhancer: Optional[Enhancer] = None):
        self.library = library
        self.settings = settings or get_settings()
        self.enhancer = enhancer
        self._cache: Dict[str, Tuple[str, float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=self.settings.enhancer_max_workers,
                                            thread_name_prefix="compliance-enhancer")
        self._in_flight = 0
        self.closed = False

    # ------------ generation ------------
    def generate(self, profile: Dict[str, Any], use_cache: bool = True,
                 today: Optional[dt.date] = None) -> Dict[str, Any]:
        """
        Returns {tasks, source, generatedAt, performance, errors}.
        source is "rule-engine", "fallback" (baseline after a failure) or
        "hybrid" (enhancer contributed, or baseline padded an empty result).
        """
        start = time.perf_counter()
        settings = self.settings
        profile = profile or {}
        uid = user_id(profile)
        on = today or _today(settings.timezone)
        fp = f"{fingerprint(profile)}:{on.isoformat()}"

        if use_cache and settings.enable_caching:
            hit = self._cache_get(uid, fp)
            if hit is not None:
                logger.debug("Cache hit for user %s", uid)
                return hit

        now = dt.datetime.now(dt.timezone.utc)
        errors: List[str] = []
        evaluated = matched = 0
        failed = False

        try:
            if not len(self.library):
                raise RuleEngineError("No rules loaded", RULE_LOADING_FAILED)
            run = evaluate_profile(self.library.rules, profile, settings, today=on, now=now)
            tasks, source = run["tasks"], "rule-engine"
            evaluated, matched = run["rulesEvaluated"], run["rulesMatched"]
            errors.extend(run["errors"])

            if self.enhancer is not None:
                enhanced = self._enhance(tasks, profile, errors)
                if enhanced is not None:
                    tasks, source = enhanced, "hybrid"
            if not tasks and settings.fill_with_baseline:
                tasks = self._baseline(profile, on, now)
                source = "hybrid" if tasks else source
        except Exception as ex:
            failed = True
            message = ex.message if isinstance(ex, RuleEngineError) else f"Rule engine failed: {ex}"
            logger.error("Task generation failed for user %s: %s", uid, message)
            errors.append(message)
            tasks = self._baseline(profile, on, now) if settings.enable_fallback else []
            source = "fallback" if settings.enable_fallback else "rule-engine"

        result = {
            "tasks": tasks,
            "source": source,
            "generatedAt": now,
            "performance": {
                "executionTimeMs": round((time.perf_counter() - start) * 1000, 3),
                "rulesEvaluated": evaluated,
                "rulesMatched": matched,
            },
            "errors": errors,
        }
        if settings.enable_caching and not failed:
            self._cache_put(uid, fp, result)
        logger.info("Generated %d tasks for user %s (source=%s, %d/%d rules matched)",
                    len(tasks), uid, source, matched, evaluated)
        return result

    def refresh(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        self.clear_user_cache(user_id(profile))
        return self.generate(profile, use_cache=False)

    def _baseline(self, profile: Dict[str, Any], on: dt.date, now: dt.datetime) -> List[Dict[str, Any]]:
        items = get_baseline_checklist(profile.get("visaType"), profile.get("currentPhase"))
        return baseline_to_tasks(items, on, now)

    def _enhance(self, tasks: List[Dict[str, Any]], profile: Dict[str, Any],
                 errors: List[str]) -> Optional[List[Dict[str, Any]]]:
        """
        Run the enhancer on a copy; timeout, failure or malformed output keeps
        the deterministic list. Enhancer output must validate as Task items.
        """
        timeout = self.settings.enhancer_timeout_seconds
        with self._lock:
            if self.closed:
                return None
            if self._in_flight >= self.settings.enhancer_max_workers:
                errors.append("Enhancer busy; using rule-engine tasks")
                return None
            self._in_flight += 1
        try:
            future = self._executor.submit(self.enhancer, copy.deepcopy(tasks), copy.deepcopy(profile))
        except RuntimeError:
            # closed between the check above and submit
            self._enhancer_done(None)
            return None
        future.add_done_callback(self._enhancer_done)
        try:
            out = future.result(timeout=timeout)
        except FutureTimeout:
            errors.append(f"Enhancer timed out after {timeout}s; using rule-engine tasks")
            return None
        except Exception as ex:
            errors.append(f"Enhancer failed: {ex}; using rule-engine tasks")
            return None

        if not isinstance(out, list):
            errors.append(f"Enhancer returned {type(out).__name__}, expected a task list; using rule-engine tasks")
            return None
        try:
            return [Task.model_validate(t).model_dump() for t in out]
        except ValidationError as ex:
            errors.append(f"Enhancer returned invalid tasks ({ex.error_count()} errors); using rule-engine tasks")
            return None

    def _enhancer_done(self, _future) -> None:
        with self._lock:
            self._in_flight -= 1

    def close(self) -> None:
        """Stop accepting enhancer work and drop anything still queued."""
        with self._lock:
            self.closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------ cache ------------
    def _cache_get(self, uid: str, fp: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._cache.get(uid)
            if entry is None:
                return None
            cached_fp, expires, result = entry
            if cached_fp != fp or expires < time.monotonic():
                del self._cache[uid]
                return None
            return copy.deepcopy(result)

    def _cache_put(self, uid: str, fp: str, result: Dict[str, Any]) -> None:
        now = time.monotonic()
        expires = now + self.settings.cache_ttl_minutes * 60
        with self._lock:
            for key in [k for k, (_, exp, _) in self._cache.items() if exp < now]:
                del self._cache[key]
            self._cache[uid] = (fp, expires, copy.deepcopy(result))

    def clear_user_cache(self, uid: str) -> None:
        with self._lock:
            self._cache.pop(uid, None)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    # ------------ health ------------
    def health_check(self) -> Dict[str, Any]:
        loaded = len(self.library)
        load_errors = len(self.library.errors)
        if not loaded:
            status = "unhealthy"
        elif load_errors:
            status = "degraded"
        else:
            status = "healthy"
        return {
            "status": status,
            "rulesLoaded": loaded,
            "loadErrors": load_errors,
            "cacheSize": self.cache_size,
            "details": {
                "files": dict(self.library.files),
                "loadedAt": self.library.loaded_at,
                "fallbackEnabled": self.settings.enable_fallback,
                "cachingEnabled": self.settings.enable_caching,
            },
        }
