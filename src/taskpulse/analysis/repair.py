"""Cumulative repair of malformed model replies.

Every step is a pure ``str -> str`` transform. :class:`RepairCascade` feeds
each step the output of the previous one and attempts a strict parse after
every step; the first step that yields a JSON object or array wins and no
later step runs. When nothing parses, keyword extraction over the raw text
synthesizes a handful of low-confidence actions instead.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from ..config import DEFAULT_ACTION_KEYWORDS, RepairSettings
from .schema import (
    ActionPriority,
    ActionType,
    AnalysisResult,
    IntelligentAction,
    ReplyQuality,
)
from .validation import validate_and_complete

RepairStep = Callable[[str], str]
LOGGER = logging.getLogger(__name__)

DIRECT_STRATEGY = "direct"
EXTRACTED_ACTION_CONFIDENCE = 0.6
MIN_EXTRACTED_TEXT_LENGTH = 6
_CLOSERS = {"{": "}", "[": "]"}

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

_TRANSLATION = str.maketrans(
    {
        0x201C: '"',
        0x201D: '"',
        0x2018: "'",
        0x2019: "'",
        0xFF07: "'",
        0x00A0: " ",
        0xFEFF: "",
    }
)


def normalise_quotes(text: str) -> str:
    """Replace typographic quotes and invisible spacing emitted by models."""
    if not text:
        return text
    return text.translate(_TRANSLATION)


def strip_fences(text: str) -> str:
    """Drop markdown fences and trailing commas before a closing bracket."""
    cleaned = _FENCE_RE.sub("", normalise_quotes(text))
    return _TRAILING_COMMA_RE.sub(r"\1", cleaned).strip()


def _strict_parse(text: str) -> Optional[Any]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError, RecursionError):
        return None
    if isinstance(value, (dict, list)):
        return value
    return None


def _is_structured(value: Any) -> bool:
    if isinstance(value, dict):
        return True
    return isinstance(value, list) and any(isinstance(item, dict) for item in value)


def _balanced_end(text: str, start: int) -> int:
    """Index just past the value opened at ``start``, or ``-1`` if it never closes."""
    expected: List[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            expected.append(_CLOSERS[char])
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected:
                return index + 1
    return -1


def extract_json_value(text: str) -> str:
    """Return the top-level object or array embedded in ``text``.

    Top-level bracketed values are tried in order and the first one that
    parses to an object, or to an array holding objects, wins. Bracketed
    prose such as ``[v2]`` or ``[1]`` is skipped. Brackets inside string
    literals are ignored. An unterminated value is returned from its opening
    bracket to the end of the text so later steps can close it.
    """
    first_balanced: Optional[str] = None
    first_parsed: Optional[str] = None
    index = 0
    while index < len(text):
        if text[index] not in _CLOSERS:
            index += 1
            continue
        end = _balanced_end(text, index)
        if end == -1:
            return text[index:].rstrip()
        candidate = text[index:end]
        value = _strict_parse(candidate)
        if value is not None and _is_structured(value):
            return candidate
        if value is not None and first_parsed is None:
            first_parsed = candidate
        if first_balanced is None:
            first_balanced = candidate
        index = end
    if first_parsed is not None:
        return first_parsed
    if first_balanced is not None:
        return first_balanced
    return text


def _scan(text: str) -> Tuple[List[str], bool]:
    """Return the open bracket stack and whether a string is left open."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
        elif stack and char == _CLOSERS[stack[-1]]:
            stack.pop()
    return stack, in_string


def close_truncated(text: str) -> str:
    """Close an unterminated string and any brackets left open."""
    stack, in_string = _scan(text)
    if not stack and not in_string:
        return text
    repaired = text
    if in_string:
        if repaired.endswith("\\"):
            repaired = repaired[:-1]
        repaired += '"'
    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1].rstrip()
    return repaired + "".join(_CLOSERS[opening] for opening in reversed(stack))


def close_open_property(text: str) -> str:
    """Complete object members cut off after their key or colon.

    A member reduced to ``"key":`` gets a ``null`` value; a bare ``"key"`` is
    dropped together with its separating comma. Dangling commas before a
    closing brace go as well, so the object closes cleanly.
    """
    out: List[str] = []
    stack: List[str] = []
    in_string = False
    escaped = False
    string_start = -1
    string_end = -1

    for char in text:
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                string_end = len(out)
            continue
        if char == '"':
            in_string = True
            string_start = len(out)
            out.append(char)
            continue
        if char == "}" and stack and stack[-1] == "{":
            _complete_member(out, string_start, string_end)
            stack.pop()
        elif char in _CLOSERS:
            stack.append(char)
        elif char == "]" and stack and stack[-1] == "[":
            stack.pop()
        out.append(char)
    return "".join(out)


def _complete_member(out: List[str], string_start: int, string_end: int) -> None:
    """Fix the tail of ``out`` just before an object's closing brace."""
    while out and out[-1].isspace():
        out.pop()
    if not out:
        return
    if out[-1] == ":":
        out.append("null")
        return
    if out[-1] == ",":
        out.pop()
        return
    if out[-1] == '"' and len(out) == string_end and string_start >= 0:
        before = "".join(out[:string_start]).rstrip()
        if before.endswith("{") or before.endswith(","):
            del out[string_start:]
            while out and out[-1].isspace():
                out.pop()
            if out and out[-1] == ",":
                out.pop()


DEFAULT_STEPS: Tuple[Tuple[str, RepairStep], ...] = (
    ("strip_fences", strip_fences),
    ("extract_json_value", extract_json_value),
    ("close_truncated", close_truncated),
    ("close_open_property", close_open_property),
)


@dataclass(frozen=True, slots=True)
class RepairOutcome:
    """Parsed value plus the step that produced it and how many steps ran."""

    value: Any
    strategy: str
    attempts: int


class RepairCascade:
    """Ordered, cumulative repair steps; the least invasive success wins."""

    def __init__(self, steps: Optional[Sequence[Tuple[str, RepairStep]]] = None) -> None:
        self._steps = tuple(steps if steps is not None else DEFAULT_STEPS)

    @property
    def step_names(self) -> List[str]:
        return [name for name, _ in self._steps]

    def run(self, raw: str) -> Optional[RepairOutcome]:
        """Return the first successful parse, or ``None`` when every step fails."""
        text = raw if isinstance(raw, str) else str(raw)
        value = _strict_parse(text)
        if value is not None:
            return RepairOutcome(value=value, strategy=DIRECT_STRATEGY, attempts=0)

        for attempt, (name, step) in enumerate(self._steps, start=1):
            try:
                text = step(text)
            except Exception:  # noqa: BLE001 - a broken step must not sink the reply
                LOGGER.debug("Repair step %s raised; keeping previous text", name, exc_info=True)
                continue
            value = _strict_parse(text)
            if value is not None:
                LOGGER.debug("Repair step %s produced valid JSON after %d attempt(s)", name, attempt)
                return RepairOutcome(value=value, strategy=name, attempts=attempt)
        LOGGER.debug("All %d repair steps failed", len(self._steps))
        return None


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword)}\w*\s+[:\-]?\s*([^.\n]+)", re.IGNORECASE)


def extract_actions_from_text(
    text: str,
    subject_id: str,
    *,
    keywords: Sequence[str] = DEFAULT_ACTION_KEYWORDS,
    max_actions: int = 2,
) -> List[IntelligentAction]:
    """Synthesize ``create_subtask`` actions from imperative phrases in ``text``.

    Keywords are scanned in order and every match of one keyword is taken
    before moving on to the next. Never raises; returns ``[]`` when nothing
    matches.
    """
    actions: List[IntelligentAction] = []
    if not text or max_actions <= 0:
        return actions

    for pattern_index, keyword in enumerate(keywords):
        if not keyword.strip():
            continue
        for match in _keyword_pattern(keyword.strip()).finditer(text):
            if len(actions) >= max_actions:
                return actions
            action_text = match.group(1).strip()
            if len(action_text) < MIN_EXTRACTED_TEXT_LENGTH:
                continue
            index = len(actions)
            actions.append(
                IntelligentAction(
                    id=f"extracted-action-{subject_id}-{index}",
                    type=ActionType.CREATE_SUBTASK,
                    label=action_text,
                    priority=ActionPriority.HIGH if index % 2 == 0 else ActionPriority.MEDIUM,
                    confidence=EXTRACTED_ACTION_CONFIDENCE,
                    suggested_data={
                        "title": action_text,
                        "content": f"Action extracted from the analysis reply: {action_text}",
                    },
                    based_on_patterns=[f"text_extraction_pattern_{pattern_index}"],
                )
            )
    return actions


_SUMMARY_KEYS = ("statusSummary", "status_summary")
_ACTION_KEYS = ("type", "label")


def _looks_like_action(item: dict) -> bool:
    if any(key in item for key in _SUMMARY_KEYS):
        return False
    return any(key in item for key in _ACTION_KEYS)


def _candidate_from(value: Any) -> dict:
    """Map a parsed reply onto the analysis object shape.

    An array of action-shaped objects is the action list itself; any other
    array contributes its first object.
    """
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        objects = [item for item in value if isinstance(item, dict)]
        if objects and all(_looks_like_action(item) for item in objects):
            return {"intelligentActions": objects}
        if objects:
            return objects[0]
    return {}


def parse_analysis_reply(
    raw: str,
    subject_id: str,
    *,
    settings: Optional[RepairSettings] = None,
    cascade: Optional[RepairCascade] = None,
) -> Tuple[AnalysisResult, ReplyQuality]:
    """Turn any reply text into a complete :class:`AnalysisResult`."""
    settings = settings or RepairSettings()
    cascade = cascade or RepairCascade()
    text = raw if isinstance(raw, str) else ""

    outcome = cascade.run(text)
    if outcome is not None:
        quality = ReplyQuality.STRICT if outcome.strategy == DIRECT_STRATEGY else ReplyQuality.REPAIRED
        return validate_and_complete(_candidate_from(outcome.value), subject_id), quality

    actions = extract_actions_from_text(
        text,
        subject_id,
        keywords=settings.action_keywords,
        max_actions=settings.max_extracted_actions,
    )
    LOGGER.debug("Extracted %d action(s) from unparseable reply for %s", len(actions), subject_id)
    return validate_and_complete({"intelligentActions": actions}, subject_id), ReplyQuality.EXTRACTED


__all__ = [
    "DEFAULT_STEPS",
    "DIRECT_STRATEGY",
    "RepairCascade",
    "RepairOutcome",
    "RepairStep",
    "close_open_property",
    "close_truncated",
    "extract_actions_from_text",
    "extract_json_value",
    "normalise_quotes",
    "parse_analysis_reply",
    "strip_fences",
]
