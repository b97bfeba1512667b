"""Prompt templates for subject analysis requests."""

from __future__ import annotations

from typing import Sequence

from ..memory.schema import Trend
from ..records import ActivityLogEntry
from .schema import AnalysisContext

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the response schema below. "
    "Do not include markdown fences, explanations, comments, or trailing text. "
    "Use double-quoted keys and strings and never leave a comma after the last element."
)

RESPONSE_SCHEMA = """{
  "statusSummary": "Current state of the task in at most 150 words",
  "nextSteps": "Concrete next steps in at most 100 words",
  "alerts": "Critical alerts, only when there are real risks",
  "insights": "Predictive analysis and strategic recommendations",
  "riskLevel": "low",
  "intelligentActions": [
    {
      "type": "create_subtask",
      "label": "Button text, at most 25 characters",
      "priority": "high",
      "confidence": 0.8,
      "suggestedData": {"title": "Suggested title", "content": "Details"}
    }
  ]
}"""

ALLOWED_VALUES = (
    "## Allowed Values\n"
    '- riskLevel: "low", "medium", "high"\n'
    '- type: "create_subtask", "create_reminder", "draft_email"\n'
    '- priority: "high", "medium", "low"'
)

PROMPT_ACTIVITY_ENTRIES = 5
PROMPT_TRENDS = 6


def render_system_prompt() -> str:
    """Return the fixed system instruction for analysis requests."""
    return (
        "You are an expert productivity analyst reviewing a single task.\n"
        f"{JSON_RESPONSE_INSTRUCTION}\n\n"
        f"## Response Schema\n{RESPONSE_SCHEMA}\n\n"
        f"{ALLOWED_VALUES}"
    )


def _render_activity(entries: Sequence[ActivityLogEntry]) -> str:
    if not entries:
        return "- No recent activity"
    return "\n".join(
        f"- {entry.log_type}: {entry.description or '(no description)'} ({entry.created_at.date().isoformat()})"
        for entry in entries[:PROMPT_ACTIVITY_ENTRIES]
    )


def _render_trends(trends: Sequence[Trend]) -> str:
    if not trends:
        return ""
    body = "\n".join(
        f"- {trend.metric}: {trend.direction.value} ({trend.magnitude:+.1f}%, confidence {trend.confidence:.2f})"
        for trend in trends[:PROMPT_TRENDS]
    )
    return f"\n\n## Behaviour Trends\n{body}"


def render_user_prompt(context: AnalysisContext) -> str:
    """Render the subject context as the user message."""
    subject = context.subject
    completion = context.completion
    due = subject.due_date.isoformat() if subject.due_date else "No due date"
    if context.project is not None:
        project_line = f"{context.project.name} - Status: {context.project.status}"
    else:
        project_line = "No project - Status: N/A"

    return (
        "## Main Task\n"
        f"Title: {subject.title}\n"
        f"Description: {subject.description or 'No description'}\n"
        f"Status: {subject.status}\n"
        f"Priority: {subject.priority}\n"
        f"Due date: {due}\n\n"
        "## Overall Progress\n"
        f"{completion.overall_progress:.0f}% complete\n"
        f"Subtasks completed: {completion.subtasks_completed}/{completion.subtasks_total}\n"
        f"Microtasks completed: {completion.microtasks_completed}/{completion.microtasks_total}\n\n"
        "## Recent Activity\n"
        f"{_render_activity(context.recent_activity)}\n\n"
        "## Dependencies\n"
        f"Blocking: {context.dependencies.blocking}\n"
        f"Dependent: {context.dependencies.dependent}\n\n"
        "## Project Context\n"
        f"{project_line}"
        f"{_render_trends(context.trends)}\n\n"
        "Produce the analysis as JSON:"
    )


__all__ = [
    "JSON_RESPONSE_INSTRUCTION",
    "RESPONSE_SCHEMA",
    "render_system_prompt",
    "render_user_prompt",
]
