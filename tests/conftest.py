import copy
import datetime as dt
import os

import pytest

from compliance_engine.config import Settings
from compliance_engine.rules_engine import RuleLibrary

RULES_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "rulesets")
TODAY = dt.date(2026, 3, 16)

VALID_RULE = {
    "id": "f1-sample-rule",
    "name": "Sample rule",
    "description": "Used by the tests",
    "ruleGroup": "documents",
    "phase": ["during_program"],
    "visaTypes": ["F1"],
    "priority": 50,
    "conditions": [{"field": "visaType", "operator": "equals", "value": "F1"}],
    "taskTemplate": {
        "titleTemplate": "Hello {user.name}",
        "descriptionTemplate": "Passport expires {dates.passportExpiryDate}",
        "category": "immigration",
        "priority": "medium",
        "dueDateConfig": {"type": "relative", "baseDate": "today", "offset": "+30days"},
    },
    "isActive": True,
    "tags": ["sample"],
    "version": "1.0",
}


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def valid_rule():
    return copy.deepcopy(VALID_RULE)


@pytest.fixture
def settings():
    return Settings(rules_dir=RULES_DIR, enable_caching=True, log_file=None)


@pytest.fixture
def library():
    lib = RuleLibrary(RULES_DIR)
    lib.load()
    return lib
