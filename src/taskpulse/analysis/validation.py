"""Final backstop turning any parsed candidate into a complete result."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from pydantic import ValidationError

from .schema import (
    ActionPriority,
    ActionType,
    AnalysisResult,
    IntelligentAction,
    RiskLevel,
)

LOGGER = logging.getLogger(__name__)

STATUS_SUMMARY_PLACEHOLDER = "Analysis temporarily unavailable."
NEXT_STEPS_PLACEHOLDER = "Review the task manually."
FALLBACK_NEXT_STEPS = "Check the task status and contact support if the problem persists."


def _field(candidate: Mapping[str, Any], camel: str, snake: str) -> Any:
    if camel in candidate:
        return candidate[camel]
    return candidate.get(snake)


def _text_or(value: Any, placeholder: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return placeholder


def _optional_text(value: Any) -> Optional[str]:
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, (list, tuple)):
        lines = [str(item) for item in value if item is not None and str(item).strip()]
        return "\n".join(lines) or None
    return str(value)


def _risk_level(value: Any) -> RiskLevel:
    try:
        return RiskLevel(value)
    except (TypeError, ValueError):
        return RiskLevel.LOW


def _coerce_action(item: Any, subject_id: str, index: int) -> Optional[IntelligentAction]:
    if isinstance(item, IntelligentAction):
        return item
    if not isinstance(item, Mapping):
        return None

    try:
        action_type = ActionType(item.get("type", ActionType.CREATE_SUBTASK.value))
    except (TypeError, ValueError):
        return None

    suggested = _field(item, "suggestedData", "suggested_data")
    suggested = dict(suggested) if isinstance(suggested, Mapping) else {}
    label = item.get("label")
    if not isinstance(label, str) or not label.strip():
        label = suggested.get("title")
    if not isinstance(label, str) or not label.strip():
        return None

    try:
        priority = ActionPriority(item.get("priority", ActionPriority.MEDIUM.value))
    except (TypeError, ValueError):
        priority = ActionPriority.MEDIUM

    patterns = _field(item, "basedOnPatterns", "based_on_patterns")
    if not isinstance(patterns, list):
        patterns = []

    action_id = item.get("id")
    if not isinstance(action_id, str) or not action_id.strip():
        action_id = f"action-{subject_id}-{index}"

    try:
        return IntelligentAction(
            id=action_id,
            type=action_type,
            label=label.strip(),
            priority=priority,
            confidence=item.get("confidence", 0.5),
            suggested_data=suggested,
            based_on_patterns=[str(pattern) for pattern in patterns],
        )
    except ValidationError:
        return None


def _actions(value: Any, subject_id: str) -> List[IntelligentAction]:
    if not isinstance(value, list):
        return []
    actions: List[IntelligentAction] = []
    for index, item in enumerate(value):
        action = _coerce_action(item, subject_id, index)
        if action is None:
            LOGGER.debug("Dropping malformed action #%d for %s", index, subject_id)
            continue
        actions.append(action)
    return actions


def validate_and_complete(candidate: Any, subject_id: str = "unknown") -> AnalysisResult:
    """Coerce ``candidate`` into an :class:`AnalysisResult`.

    Accepts camelCase or snake_case keys. Non-mapping input is treated as an
    empty object. Never raises.
    """
    if not isinstance(candidate, Mapping):
        candidate = {}

    return AnalysisResult(
        status_summary=_text_or(_field(candidate, "statusSummary", "status_summary"), STATUS_SUMMARY_PLACEHOLDER),
        next_steps=_text_or(_field(candidate, "nextSteps", "next_steps"), NEXT_STEPS_PLACEHOLDER),
        alerts=_optional_text(candidate.get("alerts")),
        insights=_optional_text(candidate.get("insights")),
        risk_level=_risk_level(_field(candidate, "riskLevel", "risk_level")),
        intelligent_actions=_actions(_field(candidate, "intelligentActions", "intelligent_actions"), subject_id),
    )


def create_fallback_response(subject_label: str) -> AnalysisResult:
    """Fixed-shape result used when the model call itself failed."""
    label = subject_label.strip() or "this task"
    return AnalysisResult(
        status_summary=f'Could not analyse the task "{label}". Review it manually.',
        next_steps=FALLBACK_NEXT_STEPS,
        risk_level=RiskLevel.MEDIUM,
        intelligent_actions=[],
    )


__all__ = [
    "NEXT_STEPS_PLACEHOLDER",
    "STATUS_SUMMARY_PLACEHOLDER",
    "create_fallback_response",
    "validate_and_complete",
]
