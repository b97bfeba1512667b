"""Subject data providers and the errors they surface."""

from __future__ import annotations

from typing import Awaitable, Dict, Iterable, Optional, Protocol, Union, runtime_checkable

from ..records import SubjectRecord

__all__ = [
    "ContextError",
    "StaticSubjectProvider",
    "SubjectDataProvider",
    "SubjectNotFoundError",
]


class ContextError(RuntimeError):
    """Raised when the context for an analysis cannot be assembled."""

    def __init__(self, subject_id: str, message: Optional[str] = None) -> None:
        self.subject_id = subject_id
        super().__init__(message or f"Context for subject '{subject_id}' is unavailable.")


class SubjectNotFoundError(ContextError):
    """Raised when the provider has no record for the requested subject."""

    def __init__(self, subject_id: str) -> None:
        super().__init__(subject_id, f"Subject '{subject_id}' was not found.")


@runtime_checkable
class SubjectDataProvider(Protocol):
    """Returns the current record for a subject, synchronously or as an awaitable.

    Implementations signal a missing subject by raising
    :class:`SubjectNotFoundError` or returning ``None``.
    """

    def fetch_subject(
        self, subject_id: str
    ) -> Union[Optional[SubjectRecord], Awaitable[Optional[SubjectRecord]]]:  # pragma: no cover - protocol
        ...


class StaticSubjectProvider:
    """In-memory provider backed by a mapping of subject id to record."""

    def __init__(self, records: Optional[Iterable[SubjectRecord]] = None) -> None:
        self._records: Dict[str, SubjectRecord] = {}
        for record in records or ():
            self.put(record)

    def put(self, record: SubjectRecord) -> None:
        self._records[record.task.id] = record

    def fetch_subject(self, subject_id: str) -> SubjectRecord:
        try:
            return self._records[subject_id]
        except KeyError:
            raise SubjectNotFoundError(subject_id) from None
