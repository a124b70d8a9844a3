# compliance_engine/errors.py
from typing import Optional

INVALID_RULE_DEFINITION = "INVALID_RULE_DEFINITION"
CONDITION_EVALUATION_FAILED = "CONDITION_EVALUATION_FAILED"
DATE_CALCULATION_FAILED = "DATE_CALCULATION_FAILED"
TEMPLATE_RENDERING_FAILED = "TEMPLATE_RENDERING_FAILED"
RULE_LOADING_FAILED = "RULE_LOADING_FAILED"
DEPENDENCY_CYCLE_DETECTED = "DEPENDENCY_CYCLE_DETECTED"


class RuleEngineError(Exception):
    """Raised inside the engine; converted to a diagnostic string at the evaluation boundary."""

    def __init__(self, message: str, code: str, rule_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.rule_id = rule_id

    def __str__(self) -> str:
        if self.rule_id:
            return f"[{self.code}] {self.rule_id}: {self.message}"
        return f"[{self.code}] {self.message}"
