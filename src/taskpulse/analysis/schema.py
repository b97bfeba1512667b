"""Typed analysis requests, results and orchestrator states."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..memory.schema import Trend, clamp_unit
from ..records import ActivityLogEntry

MAX_ACTION_LABEL_LENGTH = 50


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionType(str, Enum):
    CREATE_SUBTASK = "create_subtask"
    CREATE_REMINDER = "create_reminder"
    DRAFT_EMAIL = "draft_email"


class ActionPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AnalysisState(str, Enum):
    """Lifecycle of one analysis cycle for a subject."""

    IDLE = "idle"
    CONTEXT_LOADING = "context_loading"
    CONTEXT_READY = "context_ready"
    CONTEXT_ERROR = "context_error"
    LLM_IN_FLIGHT = "llm_in_flight"
    PARSE_AND_VALIDATE = "parse_and_validate"
    CACHED_SUCCESS = "cached_success"
    TRANSPORT_FAILED = "transport_failed"
    CACHED_FALLBACK = "cached_fallback"


class ReplyQuality(str, Enum):
    """How much repair a reply needed before it became a result."""

    STRICT = "strict"
    REPAIRED = "repaired"
    EXTRACTED = "extracted"
    FALLBACK = "fallback"


def truncate_label(label: str, limit: int = MAX_ACTION_LABEL_LENGTH) -> str:
    if len(label) <= limit:
        return label
    return f"{label[: limit - 3]}..."


class ResultModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class IntelligentAction(ResultModel):
    """Suggested follow-up the host may offer to the user."""

    id: str
    type: ActionType = ActionType.CREATE_SUBTASK
    label: str
    priority: ActionPriority = ActionPriority.MEDIUM
    confidence: float = 0.5
    suggested_data: Dict[str, Any] = Field(default_factory=dict)
    based_on_patterns: List[str] = Field(default_factory=list)

    @field_validator("label")
    @classmethod
    def _truncate(cls, value: str) -> str:
        return truncate_label(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp_unit(value)


class AnalysisResult(ResultModel):
    status_summary: str = Field(min_length=1)
    next_steps: str = Field(min_length=1)
    alerts: Optional[str] = None
    insights: Optional[str] = None
    risk_level: RiskLevel = RiskLevel.LOW
    intelligent_actions: List[IntelligentAction] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """Camel-cased wire shape, omitting absent alerts/insights."""
        payload: Dict[str, Any] = {
            "statusSummary": self.status_summary,
            "nextSteps": self.next_steps,
            "riskLevel": self.risk_level.value,
            "intelligentActions": [
                {
                    "id": action.id,
                    "type": action.type.value,
                    "label": action.label,
                    "priority": action.priority.value,
                    "confidence": action.confidence,
                    "suggestedData": dict(action.suggested_data),
                    "basedOnPatterns": list(action.based_on_patterns),
                }
                for action in self.intelligent_actions
            ],
        }
        if self.alerts is not None:
            payload["alerts"] = self.alerts
        if self.insights is not None:
            payload["insights"] = self.insights
        return payload


class SubjectSnapshot(ResultModel):
    id: str
    title: str
    description: str = ""
    status: str
    priority: str
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CompletionStatus(ResultModel):
    """Completion ratios of a subject's children."""

    subtasks_total: int = 0
    subtasks_completed: int = 0
    microtasks_total: int = 0
    microtasks_completed: int = 0
    overall_progress: float = 0.0


class DependencyCounts(ResultModel):
    blocking: int = 0
    dependent: int = 0


class ProjectSummary(ResultModel):
    id: str
    name: str
    status: str = "active"
    progress: float = 0.0


class AnalysisContext(ResultModel):
    """Immutable snapshot assembled for one analysis request."""

    subject: SubjectSnapshot
    completion: CompletionStatus = Field(default_factory=CompletionStatus)
    recent_activity: List[ActivityLogEntry] = Field(default_factory=list)
    dependencies: DependencyCounts = Field(default_factory=DependencyCounts)
    project: Optional[ProjectSummary] = None
    trends: List[Trend] = Field(default_factory=list)
    built_at: datetime


__all__ = [
    "ActionPriority",
    "ActionType",
    "AnalysisContext",
    "AnalysisResult",
    "AnalysisState",
    "CompletionStatus",
    "DependencyCounts",
    "IntelligentAction",
    "MAX_ACTION_LABEL_LENGTH",
    "ProjectSummary",
    "ReplyQuality",
    "RiskLevel",
    "SubjectSnapshot",
    "truncate_label",
]
