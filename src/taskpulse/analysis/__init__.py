"""Analysis requests, reply repair and orchestration."""

from .orchestrator import AnalysisOrchestrator, Resolution
from .providers import ContextError, StaticSubjectProvider, SubjectDataProvider, SubjectNotFoundError
from .repair import RepairCascade, RepairOutcome, extract_actions_from_text, parse_analysis_reply
from .schema import (
    ActionPriority,
    ActionType,
    AnalysisContext,
    AnalysisResult,
    AnalysisState,
    IntelligentAction,
    ReplyQuality,
    RiskLevel,
)
from .validation import create_fallback_response, validate_and_complete

__all__ = [
    "ActionPriority",
    "ActionType",
    "AnalysisContext",
    "AnalysisOrchestrator",
    "AnalysisResult",
    "AnalysisState",
    "ContextError",
    "IntelligentAction",
    "RepairCascade",
    "RepairOutcome",
    "ReplyQuality",
    "Resolution",
    "RiskLevel",
    "StaticSubjectProvider",
    "SubjectDataProvider",
    "SubjectNotFoundError",
    "create_fallback_response",
    "extract_actions_from_text",
    "parse_analysis_reply",
    "validate_and_complete",
]
