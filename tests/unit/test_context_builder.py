from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from taskpulse.analysis.context_builder import build_analysis_context, completion_status, package_context
from taskpulse.analysis.prompts import JSON_RESPONSE_INSTRUCTION
from taskpulse.records import SubjectRecord, TaskRecord

BUILT_AT = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


def test_context_is_bounded_newest_first_and_frozen(subject_record) -> None:
    context = build_analysis_context(subject_record, built_at=BUILT_AT)

    assert [entry.id for entry in context.recent_activity] == [f"log-{index}" for index in range(8)]
    assert context.dependencies.blocking == 1
    assert context.dependencies.dependent == 2
    assert context.project is not None and context.project.name == "Finance"
    with pytest.raises(ValidationError):
        context.built_at = BUILT_AT


def test_completion_prefers_subtasks_then_microtasks(subject_record) -> None:
    assert completion_status(subject_record).overall_progress == 25.0

    micro_only = SubjectRecord(
        task=TaskRecord(id="M", title="Micro"),
        microtasks=[
            TaskRecord(id="m1", title="m1", status="completed"),
            TaskRecord(id="m2", title="m2", status="completed"),
            TaskRecord(id="m3", title="m3"),
        ],
    )
    assert completion_status(micro_only).overall_progress == pytest.approx(66.67)

    bare = SubjectRecord(task=TaskRecord(id="B", title="Bare"))
    assert completion_status(bare).overall_progress == 0


def test_prompts_describe_the_subject(subject_record) -> None:
    package = package_context(build_analysis_context(subject_record, built_at=BUILT_AT, max_activity_entries=8))

    assert JSON_RESPONSE_INSTRUCTION in package.system_prompt
    assert "Title: Ship quarterly report" in package.user_prompt
    assert "25% complete" in package.user_prompt
    assert "Subtasks completed: 1/4" in package.user_prompt
    assert "Blocking: 1" in package.user_prompt
    assert "Finance - Status: active" in package.user_prompt
    assert package.user_prompt.count("- note: Update") == 5
    assert "Behaviour Trends" not in package.user_prompt


def test_prompt_without_project_or_activity() -> None:
    record = SubjectRecord(task=TaskRecord(id="X", title="Lonely"))

    prompt = package_context(build_analysis_context(record, built_at=BUILT_AT)).user_prompt

    assert "No project - Status: N/A" in prompt
    assert "- No recent activity" in prompt
    assert "Due date: No due date" in prompt
