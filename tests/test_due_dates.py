import datetime as dt

import pytest

from compliance_engine.due_dates import calculate_due_date
from compliance_engine.errors import RuleEngineError
from compliance_engine.time_engine import add_months, apply_offset, format_time_remaining, parse_offset


def test_parse_offset():
    assert parse_offset("+10days") == (10, "day")
    assert parse_offset("-90days") == (-90, "day")
    assert parse_offset("6months") == (6, "month")
    assert parse_offset("1 year") == (1, "year")
    with pytest.raises(RuleEngineError):
        parse_offset("ten days")


def test_calendar_months_clamp():
    assert add_months(dt.date(2026, 1, 31), 1) == dt.date(2026, 2, 28)
    assert apply_offset(dt.date(2028, 2, 29), "+1year") == dt.date(2029, 2, 28)
    assert apply_offset(dt.date(2026, 3, 16), "-2weeks") == dt.date(2026, 3, 2)


def test_relative(today):
    ctx = {"dates": {"employmentStartDate": dt.date(2026, 3, 2)}}
    cfg = {"type": "relative", "baseDate": "dates.employmentStartDate", "offset": "+10days"}
    assert calculate_due_date(cfg, ctx, today) == dt.date(2026, 3, 12)
    assert calculate_due_date({"type": "relative", "baseDate": "today", "offset": "+1month"}, {}, today) == \
        dt.date(2026, 4, 16)


def test_fixed_with_clamps(today):
    cfg = {"type": "fixed", "baseDate": "2026-12-31", "maxDate": "2026-12-01"}
    assert calculate_due_date(cfg, {}, today) == dt.date(2026, 12, 1)
    cfg = {"type": "fixed", "baseDate": "2026-01-05", "minDate": "2026-02-01"}
    assert calculate_due_date(cfg, {}, today) == dt.date(2026, 2, 1)


def test_passport_strategy(today):
    cfg = {"type": "calculated", "calculation": "passport_renewal_urgent"}
    inside = {"dates": {"passportExpiryDate": add_months(today, 5)}}
    assert calculate_due_date(cfg, inside, today) == today + dt.timedelta(days=14)
    outside = {"dates": {"passportExpiryDate": dt.date(2027, 12, 1)}}
    assert calculate_due_date(cfg, outside, today) == dt.date(2027, 6, 1)


def test_opt_window_strategy(today):
    cfg = {"type": "calculated", "calculation": "opt_application_window"}
    assert calculate_due_date(cfg, {"dates": {"graduationDate": dt.date(2026, 5, 1)}}, today) == dt.date(2026, 3, 23)
    assert calculate_due_date(cfg, {"dates": {"graduationDate": dt.date(2026, 12, 1)}}, today) == dt.date(2026, 9, 2)


def test_other_strategies(today):
    ctx = {"dates": {"optEndDate": dt.date(2026, 6, 30), "employmentEndDate": dt.date(2026, 1, 10)},
           "location": {"lastMoved": dt.date(2026, 3, 10)}}
    calc = lambda name: calculate_due_date({"type": "calculated", "calculation": name}, ctx, today)
    assert calc("stem_extension_deadline") == dt.date(2026, 4, 1)
    assert calc("unemployment_grace_end") == dt.date(2026, 4, 10)
    assert calc("address_update_deadline") == dt.date(2026, 3, 20)
    assert calculate_due_date({"type": "calculated", "calculation": "address_update_deadline"}, {}, today) == \
        dt.date(2026, 3, 19)


def test_recurring(today):
    assert calculate_due_date({"type": "recurring", "calculation": "monthly"}, {}, today) == dt.date(2026, 4, 1)
    assert calculate_due_date({"type": "recurring", "calculation": "quarterly"}, {}, today) == dt.date(2026, 4, 1)
    assert calculate_due_date({"type": "recurring", "calculation": "yearly"}, {}, today) == dt.date(2027, 3, 16)


def test_business_days_and_holidays(today):
    saturday = {"type": "fixed", "baseDate": "2026-03-21", "businessDaysOnly": True}
    assert calculate_due_date(saturday, {}, today) == dt.date(2026, 3, 23)
    july4 = {"type": "fixed", "baseDate": "2026-07-04", "excludeHolidays": True}
    # Saturday holiday -> next business day
    assert calculate_due_date(july4, {}, today) == dt.date(2026, 7, 6)


@pytest.mark.parametrize("cfg,ctx", [
    ({"type": "calculated", "calculation": "mystery"}, {}),
    ({"type": "calculated", "calculation": "passport_renewal_urgent"}, {}),
    ({"type": "relative", "baseDate": "dates.graduationDate", "offset": "soon"}, {"dates": {"graduationDate": "2026-05-01"}}),
    ({"type": "lunar"}, {}),
    (None, {}),
])
def test_failures_fall_back_to_default_offset(cfg, ctx, today):
    diagnostics = []
    assert calculate_due_date(cfg, ctx, today, diagnostics, default_offset_days=7) == today + dt.timedelta(days=7)
    assert len(diagnostics) == 1


def test_format_time_remaining():
    assert format_time_remaining(-3) == "Expired"
    assert format_time_remaining(0) == "Today"
    assert format_time_remaining(45) == "1 month"
    assert format_time_remaining(400) == "1 year 1 month"
