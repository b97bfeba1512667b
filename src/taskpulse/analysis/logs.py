"""Structured JSON logs for analysis cycles and helpers to read them back."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from ..clock import ensure_aware

__all__ = ["AnalysisLogEntry", "load_analysis_log", "write_analysis_log"]

MAX_NAME_ATTEMPTS = 100


@dataclass(slots=True)
class AnalysisLogEntry:
    """In-memory representation of a stored analysis log."""

    path: Path
    subject_id: str
    payload: Mapping[str, Any]

    @property
    def context(self) -> Mapping[str, Any]:
        value = self.payload.get("context")
        if isinstance(value, Mapping):
            return value
        return {}

    @property
    def result(self) -> Mapping[str, Any]:
        value = self.payload.get("result")
        if isinstance(value, Mapping):
            return value
        return {}

    @property
    def quality(self) -> Optional[str]:
        candidate = self.payload.get("quality")
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
        return None

    @property
    def raw_reply(self) -> Optional[str]:
        candidate = self.payload.get("raw_reply")
        if isinstance(candidate, str):
            return candidate
        return None


def load_analysis_log(path: Path | str) -> AnalysisLogEntry:
    """Load a structured analysis log from disk."""
    log_path = Path(path).resolve()
    with log_path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    subject_id = str(payload.get("subject_id") or "").strip()
    return AnalysisLogEntry(path=log_path, subject_id=subject_id, payload=payload)


def write_analysis_log(
    logs_root: Path,
    subject_id: str,
    *,
    timestamp: datetime,
    system_prompt: str,
    user_prompt: str,
    raw_reply: Optional[str] = None,
    quality: Optional[str] = None,
    result: Any | None = None,
    error: Exception | None = None,
    generation: int = 0,
) -> Optional[Path]:
    """Persist one analysis cycle; returns ``None`` when the log cannot be written."""
    target_root = logs_root / "analysis"
    try:
        target_root.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None

    entry: dict[str, Any] = {
        "timestamp": timestamp.isoformat(),
        "subject_id": subject_id,
        "generation": generation,
        "context": {
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
        },
    }
    if raw_reply is not None:
        entry["raw_reply"] = raw_reply
    if quality is not None:
        entry["quality"] = quality
    if result is not None:
        entry["result"] = _json_safe(result)
    if error is not None:
        entry["error"] = str(error)

    stamp = ensure_aware(timestamp).astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    stem = f"analysis__{_slug(subject_id, fallback='subject')}__g{generation}__{stamp}"
    body = json.dumps(entry, indent=2, sort_keys=True)
    for attempt in range(MAX_NAME_ATTEMPTS):
        path = target_root / (f"{stem}-{attempt}.json" if attempt else f"{stem}.json")
        try:
            with path.open("x", encoding="utf-8") as handle:
                handle.write(body)
        except FileExistsError:
            continue
        except OSError:
            return None
        return path
    return None


def _json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        try:
            return _json_safe(value.model_dump(mode="json"))
        except TypeError:
            pass
    if isinstance(value, dict):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    return str(value)


def _slug(value: str, *, fallback: str = "item", max_length: int = 80) -> str:
    """Normalise identifiers for use in log filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "-", value).strip("-")
    slug = cleaned or fallback
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix_length = max(max_length - len(digest) - 1, 1)
    prefix = slug[:prefix_length].rstrip("-") or slug[:prefix_length]
    return f"{prefix}-{digest}"
