import datetime as dt
import threading
import time

from compliance_engine.baseline import get_baseline_checklist
from compliance_engine.config import Settings
from compliance_engine.rules_engine import RuleLibrary
from compliance_engine.service import ComplianceService
from compliance_engine.summary import overdue_tasks, summarize, tasks_by_phase, urgent_tasks
from compliance_engine.time_engine import add_months

PASSPORT_PROFILE = {"userId": "u-1", "visaType": "F1", "currentPhase": "during_program",
                    "dates": {"passportExpiryDate": "2026-07-01"}}


def test_generate_shape(library, settings, today):
    res = ComplianceService(library, settings).generate(PASSPORT_PROFILE, today=today)
    assert set(res) == {"tasks", "source", "generatedAt", "performance", "errors"}
    assert res["source"] == "rule-engine"
    assert set(res["performance"]) == {"executionTimeMs", "rulesEvaluated", "rulesMatched"}
    assert res["performance"]["rulesMatched"] == len(res["tasks"]) == 1


def test_generate_is_idempotent(library, today):
    svc = ComplianceService(library, Settings(enable_caching=False))
    first = svc.generate(PASSPORT_PROFILE, today=today)
    second = svc.generate(PASSPORT_PROFILE, today=today)
    strip = lambda r: [(t["id"], t["title"], t["description"], t["dueDate"]) for t in r["tasks"]]
    assert strip(first) == strip(second)


def test_h1b_gets_no_rule_tasks(library, settings, today):
    res = ComplianceService(library, settings).generate({"visaType": "H1B", "currentPhase": "general"}, today=today)
    assert res["source"] == "rule-engine"
    assert res["tasks"] == []
    assert res["performance"]["rulesMatched"] == 0


def test_fill_with_baseline_is_hybrid(library, today):
    svc = ComplianceService(library, Settings(fill_with_baseline=True, enable_caching=False))
    res = svc.generate({"visaType": "H1B", "currentPhase": "general"}, today=today)
    assert res["source"] == "hybrid"
    assert [t["id"] for t in res["tasks"]] == ["h1b-i797", "h1b-i94", "h1b-employer-letter", "h1b-resume"]
    assert res["performance"]["rulesMatched"] == 0


def test_empty_library_falls_back(settings, today):
    res = ComplianceService(RuleLibrary(), settings).generate({"visaType": "J1"}, today=today)
    assert res["source"] == "fallback"
    assert res["errors"] == ["No rules loaded"]
    assert res["tasks"][0]["id"] == "j1-ds2019"
    assert res["tasks"][0]["dueDate"] == today + dt.timedelta(days=7)


def test_engine_exception_falls_back(library, settings, today, monkeypatch):
    def boom(*args, **kwargs):
        raise KeyError("dates")
    monkeypatch.setattr("compliance_engine.service.evaluate_profile", boom)
    res = ComplianceService(library, settings).generate(PASSPORT_PROFILE, today=today)
    assert res["source"] == "fallback"
    assert res["errors"] and "Rule engine failed" in res["errors"][0]
    assert {t["id"] for t in res["tasks"]} >= {"f1-passport", "f1-i20"}


def test_cache_hit_and_invalidation(library, settings, today):
    svc = ComplianceService(library, settings)
    first = svc.generate(PASSPORT_PROFILE, today=today)
    assert svc.cache_size == 1
    assert svc.generate(PASSPORT_PROFILE, today=today)["generatedAt"] == first["generatedAt"]

    changed = dict(PASSPORT_PROFILE, dates={"passportExpiryDate": "2030-01-01"})
    assert svc.generate(changed, today=today)["tasks"] == []

    svc.clear_user_cache("u-1")
    assert svc.cache_size == 0
    svc.generate(PASSPORT_PROFILE, today=today)
    svc.clear_cache()
    assert svc.cache_size == 0


def test_enhancer_makes_result_hybrid(library, settings, today):
    def enhancer(tasks, profile):
        return [dict(t, title=t["title"] + " (reviewed)") for t in tasks]
    res = ComplianceService(library, settings, enhancer=enhancer).generate(PASSPORT_PROFILE, today=today)
    assert res["source"] == "hybrid"
    assert res["tasks"][0]["title"].endswith("(reviewed)")


def test_slow_enhancer_times_out(library, today):
    def slow(tasks, profile):
        time.sleep(1)
        return []
    svc = ComplianceService(library, Settings(enhancer_timeout_seconds=0.05, enable_caching=False), enhancer=slow)
    res = svc.generate(PASSPORT_PROFILE, today=today)
    assert res["source"] == "rule-engine"
    assert len(res["tasks"]) == 1
    assert any("timed out" in e for e in res["errors"])


def test_failing_enhancer_is_ignored(library, settings, today):
    def broken(tasks, profile):
        raise RuntimeError("model unavailable")
    res = ComplianceService(library, settings, enhancer=broken).generate(PASSPORT_PROFILE, today=today)
    assert res["source"] == "rule-engine"
    assert any("model unavailable" in e for e in res["errors"])


def test_malformed_enhancer_output_keeps_rule_tasks(library, settings, today):
    svc = ComplianceService(library, settings, enhancer=lambda tasks, profile: [{"title": "x"}])
    res = svc.generate(PASSPORT_PROFILE, today=today)
    assert res["source"] == "rule-engine"
    assert [t["ruleId"] for t in res["tasks"]] == ["f1-passport-renewal-urgent"]
    assert any("invalid tasks" in e for e in res["errors"])

    svc = ComplianceService(library, settings, enhancer=lambda tasks, profile: {"tasks": tasks})
    res = svc.generate(PASSPORT_PROFILE, today=today)
    assert res["source"] == "rule-engine"
    assert any("expected a task list" in e for e in res["errors"])


def test_hung_enhancer_uses_one_worker(library, today):
    release = threading.Event()

    def hung(tasks, profile):
        release.wait(5)
        return tasks

    count = lambda: sum(t.name.startswith("compliance-enhancer") for t in threading.enumerate())
    before = count()
    svc = ComplianceService(library, Settings(enhancer_timeout_seconds=0.05, enable_caching=False), enhancer=hung)
    try:
        results = [svc.generate(PASSPORT_PROFILE, today=today) for _ in range(4)]
        assert all(r["source"] == "rule-engine" and len(r["tasks"]) == 1 for r in results)
        assert any("timed out" in e for e in results[0]["errors"])
        assert all("Enhancer busy; using rule-engine tasks" in r["errors"] for r in results[1:])
        assert count() - before <= 1
    finally:
        release.set()
        svc.close()


def test_closed_service_skips_enhancer(library, settings, today):
    calls = []
    svc = ComplianceService(library, settings, enhancer=lambda tasks, profile: calls.append(1) or tasks)
    svc.close()
    res = svc.generate(PASSPORT_PROFILE, today=today)
    assert svc.closed
    assert calls == []
    assert res["source"] == "rule-engine"
    assert len(res["tasks"]) == 1


def test_missing_profile_never_raises(settings, today):
    res = ComplianceService(RuleLibrary(), settings).generate(None, today=today)
    assert res["source"] == "fallback"
    assert res["tasks"] == []
    assert res["errors"] == ["No rules loaded"]


def test_cache_prunes_expired_and_keys_on_date(library, today):
    svc = ComplianceService(library, Settings(cache_ttl_minutes=0))
    svc.generate(PASSPORT_PROFILE, today=today)
    time.sleep(0.01)
    svc.generate(dict(PASSPORT_PROFILE, userId="u-2"), today=today)
    assert svc.cache_size == 1

    svc = ComplianceService(library, Settings())
    first = svc.generate(PASSPORT_PROFILE, today=today)
    later = svc.generate(PASSPORT_PROFILE, today=today + dt.timedelta(days=1))
    assert later["tasks"][0]["dueDate"] == first["tasks"][0]["dueDate"] + dt.timedelta(days=1)


def test_engine_logs_propagate(library, settings, today, caplog):
    with caplog.at_level("INFO", logger="compliance_engine"):
        ComplianceService(library, settings).generate(PASSPORT_PROFILE, today=today)
    assert any("Generated 1 tasks for user u-1" in r.getMessage() for r in caplog.records)


def test_health_check(library, settings, tmp_path):
    assert ComplianceService(library, settings).health_check()["status"] == "healthy"
    assert ComplianceService(RuleLibrary(), settings).health_check()["status"] == "unhealthy"
    (tmp_path / "broken.json").write_text("[]", encoding="utf-8")
    (tmp_path / "ok.json").write_text(
        '{"ruleSet": {"name": "x"}, "rules": [{"id": "f1-x", "name": "x", "visaTypes": ["F1"], "priority": 1,'
        ' "conditions": [{"field": "a", "operator": "exists"}],'
        ' "taskTemplate": {"titleTemplate": "t", "descriptionTemplate": "d", "priority": "low"}}]}',
        encoding="utf-8")
    partial = RuleLibrary(str(tmp_path))
    partial.load()
    assert ComplianceService(partial, settings).health_check()["status"] == "degraded"


def test_baseline_phases():
    assert len(get_baseline_checklist("F1")) == 6
    assert len(get_baseline_checklist("F1", "OPT")) == 10
    assert len(get_baseline_checklist("f1", "STEM OPT")) == 16
    assert get_baseline_checklist(None) == []
    assert get_baseline_checklist("B2") == []


def test_task_views(library, settings, today):
    profile = {"userId": "u-9", "visaType": "F1", "currentPhase": "during_program",
               "dates": {"passportExpiryDate": add_months(today, 3).isoformat()},
               "flags": {"addressChangeRecent": True},
               "location": {"addressReportedToSevis": False, "lastMoved": "2026-03-01"}}
    tasks = ComplianceService(library, settings).generate(profile, today=today)["tasks"]
    assert set(tasks_by_phase(tasks)) == {"during_program"}
    assert [t["ruleId"] for t in overdue_tasks(tasks, today)] == ["f1-address-change-sevis"]
    assert len(urgent_tasks(tasks, today)) == 2
    report = summarize(tasks, today)
    assert report["total"] == 2
    assert report["byPriority"]["high"] == 2
    assert report["nextDeadline"] == today + dt.timedelta(days=14)
    assert report["summary_lines"][0].startswith("⚡ Report Address Change")
