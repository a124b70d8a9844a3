# compliance_engine/schemas.py
# Request/response models for the HTTP layer. The engine itself works on plain dicts.
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Task(BaseModel):
    id: str
    title: str
    description: str
    dueDate: date
    completed: bool = False
    category: str
    phase: str
    priority: Literal["low", "medium", "high"]
    createdAt: datetime
    updatedAt: datetime
    ruleId: Optional[str] = None
    dependsOn: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    isRecurring: bool = False
    recurringInterval: Optional[str] = None
    source: str = "rule-engine"


class Performance(BaseModel):
    executionTimeMs: float
    rulesEvaluated: int
    rulesMatched: int


class GenerationResult(BaseModel):
    tasks: List[Task]
    source: Literal["rule-engine", "fallback", "hybrid"]
    generatedAt: datetime
    performance: Performance
    errors: List[str] = Field(default_factory=list)


class HealthStatus(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    rulesLoaded: int
    loadErrors: int
    cacheSize: int
    details: Dict[str, Any] = Field(default_factory=dict)


class ProfileIn(BaseModel):
    """User profile context. Known sections are typed loosely; anything else passes through."""
    model_config = ConfigDict(extra="allow")

    userId: Optional[str] = None
    visaType: str
    currentPhase: Optional[str] = None
    phases: Optional[List[str]] = None
    dates: Dict[str, Any] = Field(default_factory=dict)
    academic: Dict[str, Any] = Field(default_factory=dict)
    employment: Dict[str, Any] = Field(default_factory=dict)
    user: Dict[str, Any] = Field(default_factory=dict)

    def to_context(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
