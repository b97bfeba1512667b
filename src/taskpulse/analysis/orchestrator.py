"""Analysis orchestration: context assembly, model calls, caching and staleness.

Each subject carries a monotonic generation counter. Pending work, cached
contexts and cached results are keyed by ``(subject_id, model, generation)``;
``clear_analysis`` bumps the generation so anything tied to an older one is
ignored by later reads. Work already running for a superseded generation is
left to finish and its future still resolves, but the result is only written
to :meth:`AnalysisOrchestrator.resolutions`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from ..clock import Clock, SystemClock
from ..config import PipelineConfig
from ..memory.aggregation import AggregationEngine
from ..memory.schema import DataKind, TimeRange
from ..models.llm_client import TextGenerationClient
from ..records import SubjectRecord
from .context_builder import ContextPackage, build_analysis_context, package_context
from .logs import write_analysis_log
from .providers import ContextError, SubjectDataProvider, SubjectNotFoundError
from .repair import RepairCascade, parse_analysis_reply
from .schema import AnalysisResult, AnalysisState, ReplyQuality
from .validation import create_fallback_response

LOGGER = logging.getLogger(__name__)

RESOLUTION_HISTORY = 100
TREND_KINDS = (DataKind.PRODUCTIVITY_METRICS, DataKind.USER_BEHAVIOR)

CacheKey = Tuple[str, str, int]


@dataclass(slots=True)
class _Cached:
    value: Any
    stored_at: datetime


@dataclass(frozen=True, slots=True)
class Resolution:
    """Internal record of one finished model call."""

    subject_id: str
    generation: int
    result: AnalysisResult
    quality: ReplyQuality
    stale: bool
    resolved_at: datetime


def _completed(result: AnalysisResult) -> Future:
    future: Future = Future()
    future.set_result(result)
    return future


async def _await(awaitable: Any) -> Any:
    return await awaitable


class AnalysisOrchestrator:
    """Coordinates analysis cycles for subjects.

    Only :class:`ContextError` (including :class:`SubjectNotFoundError`)
    reaches callers. Transport failures resolve with the fallback response
    and malformed replies resolve with whatever the repair cascade salvages.
    """

    def __init__(
        self,
        provider: SubjectDataProvider,
        client: TextGenerationClient,
        *,
        config: Optional[PipelineConfig] = None,
        clock: Optional[Clock] = None,
        aggregation: Optional[AggregationEngine] = None,
        cascade: Optional[RepairCascade] = None,
    ) -> None:
        self._provider = provider
        self._client = client
        self._config = config or PipelineConfig()
        self._clock = clock or SystemClock()
        self._aggregation = aggregation
        self._cascade = cascade or RepairCascade()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.analysis.max_workers,
            thread_name_prefix="taskpulse-analysis",
        )
        self._lock = threading.Lock()
        self._generations: Dict[str, int] = {}
        self._pending: Dict[CacheKey, Future] = {}
        self._awaiting: Dict[CacheKey, ContextPackage] = {}
        self._triggered: Set[CacheKey] = set()
        self._results: Dict[CacheKey, _Cached] = {}
        self._contexts: Dict[Tuple[str, int], _Cached] = {}
        self._states: Dict[str, AnalysisState] = {}
        self._latest: Dict[str, AnalysisResult] = {}
        self._resolutions: Deque[Resolution] = deque(maxlen=RESOLUTION_HISTORY)
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        provider: SubjectDataProvider,
        client: TextGenerationClient,
        *,
        clock: Optional[Clock] = None,
        aggregation: Optional[AggregationEngine] = None,
    ) -> "AnalysisOrchestrator":
        return cls(provider, client, config=config, clock=clock, aggregation=aggregation)

    @property
    def model(self) -> str:
        return str(getattr(self._client, "model", "default"))

    @property
    def manual_trigger(self) -> bool:
        return self._config.analysis.manual_trigger

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------
    def submit_analysis(self, subject_id: str) -> Future:
        """Return a future for the current generation's analysis of ``subject_id``.

        A fresh cached result comes back as an already-completed future; a
        request already in flight for the same key is shared.
        """
        return self._submit(subject_id, trigger=False)

    def execute_analysis(self, subject_id: str, timeout: Optional[float] = None) -> AnalysisResult:
        """Block until the analysis resolves.

        A request waiting for a manual trigger that gets cleared is retried
        against the new generation.
        """
        while True:
            future = self.submit_analysis(subject_id)
            try:
                return future.result(timeout)
            except CancelledError:
                LOGGER.debug("Analysis for %s was superseded before it started; retrying", subject_id)

    def trigger_analysis(self, subject_id: str) -> Future:
        """Release a request held for manual trigger, starting one if needed."""
        return self._submit(subject_id, trigger=True)

    def clear_analysis(self, subject_id: str) -> int:
        """Invalidate cached and in-flight work for ``subject_id``; return the new generation."""
        cancelled: List[Future] = []
        with self._lock:
            generation = self._generations.get(subject_id, 0) + 1
            self._generations[subject_id] = generation
            for key in [key for key in self._results if key[0] == subject_id]:
                del self._results[key]
            for key in [key for key in self._contexts if key[0] == subject_id]:
                del self._contexts[key]
            for key in [key for key in self._awaiting if key[0] == subject_id]:
                del self._awaiting[key]
                future = self._pending.pop(key, None)
                if future is not None:
                    cancelled.append(future)
            self._triggered = {key for key in self._triggered if key[0] != subject_id}
            self._latest.pop(subject_id, None)
            self._states[subject_id] = AnalysisState.IDLE
        for future in cancelled:
            future.cancel()
        LOGGER.debug("Cleared analysis for %s (generation %d)", subject_id, generation)
        return generation

    def state(self, subject_id: str) -> AnalysisState:
        with self._lock:
            return self._states.get(subject_id, AnalysisState.IDLE)

    def generation(self, subject_id: str) -> int:
        with self._lock:
            return self._generations.get(subject_id, 0)

    def latest_result(self, subject_id: str) -> Optional[AnalysisResult]:
        """Most recent result of the current generation, if any."""
        with self._lock:
            return self._latest.get(subject_id)

    def resolutions(self) -> List[Resolution]:
        """Every recorded resolution, stale ones included, oldest first."""
        with self._lock:
            return list(self._resolutions)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            waiting = [self._pending.pop(key) for key in list(self._awaiting) if key in self._pending]
            self._awaiting.clear()
        for future in waiting:
            future.cancel()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "AnalysisOrchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _key(self, subject_id: str) -> CacheKey:
        return (subject_id, self.model, self._generations.get(subject_id, 0))

    def _is_current(self, key: CacheKey) -> bool:
        return self._generations.get(key[0], 0) == key[2]

    def _fresh(self, cached: Optional[_Cached], ttl_minutes: float, now: datetime) -> bool:
        return cached is not None and now - cached.stored_at < timedelta(minutes=ttl_minutes)

    def _submit(self, subject_id: str, *, trigger: bool) -> Future:
        now = self._clock.now()
        release: Optional[ContextPackage] = None
        with self._lock:
            if self._closed:
                raise RuntimeError("Analysis orchestrator is closed.")
            key = self._key(subject_id)
            cached = self._results.get(key)
            if self._fresh(cached, self._config.analysis.result_ttl_minutes, now):
                LOGGER.debug("Serving cached analysis for %s", subject_id)
                return _completed(cached.value)
            if cached is not None:
                del self._results[key]

            future = self._pending.get(key)
            if future is not None:
                if trigger:
                    release = self._awaiting.pop(key, None)
                    if release is None:
                        self._triggered.add(key)
                if release is None:
                    return future
            else:
                future = Future()
                self._pending[key] = future
                if trigger:
                    self._triggered.add(key)
                self._states[subject_id] = AnalysisState.CONTEXT_LOADING

        if release is not None:
            self._executor.submit(self._generate, key, future, release)
        else:
            self._executor.submit(self._run_cycle, key, future)
        return future

    def _run_cycle(self, key: CacheKey, future: Future) -> None:
        subject_id = key[0]
        try:
            package = self._context_for(key)
        except Exception as exc:  # noqa: BLE001 - every context failure surfaces as ContextError
            if isinstance(exc, ContextError):
                error = exc
            else:
                error = ContextError(subject_id, f"Failed to build context for '{subject_id}': {exc}")
                error.__cause__ = exc
            LOGGER.info("Context unavailable for %s: %s", subject_id, error)
            with self._lock:
                if self._pending.get(key) is future:
                    del self._pending[key]
                self._triggered.discard(key)
                if self._is_current(key):
                    self._states[subject_id] = AnalysisState.CONTEXT_ERROR
            future.set_exception(error)
            return

        with self._lock:
            if self._is_current(key):
                self._states[subject_id] = AnalysisState.CONTEXT_READY
            hold = self.manual_trigger and key not in self._triggered and self._is_current(key)
            if hold:
                self._awaiting[key] = package
            self._triggered.discard(key)
        if hold:
            LOGGER.debug("Context ready for %s; waiting for manual trigger", subject_id)
            return
        self._generate(key, future, package)

    def _context_for(self, key: CacheKey) -> ContextPackage:
        subject_id, _, generation = key
        now = self._clock.now()
        with self._lock:
            cached = self._contexts.get((subject_id, generation))
            if self._fresh(cached, self._config.analysis.context_ttl_minutes, now):
                return cached.value

        record = self._fetch_subject(subject_id)
        trends = []
        if self._aggregation is not None:
            window = TimeRange.trailing(now, self._config.analysis.trend_window_hours)
            trends = self._aggregation.trends_for(TREND_KINDS, window)
        context = build_analysis_context(
            record,
            built_at=now,
            max_activity_entries=self._config.analysis.max_activity_entries,
            trends=trends,
        )
        package = package_context(context)
        with self._lock:
            if self._is_current(key):
                self._contexts[(subject_id, generation)] = _Cached(value=package, stored_at=now)
        return package

    def _fetch_subject(self, subject_id: str) -> SubjectRecord:
        try:
            record = self._provider.fetch_subject(subject_id)
            if inspect.isawaitable(record):
                record = asyncio.run(_await(record))
        except ContextError:
            raise
        except Exception as error:  # noqa: BLE001 - provider boundary
            raise ContextError(subject_id, f"Failed to load subject '{subject_id}': {error}") from error
        if record is None:
            raise SubjectNotFoundError(subject_id)
        if not isinstance(record, SubjectRecord):
            raise ContextError(subject_id, f"Provider returned {type(record).__name__} for '{subject_id}'.")
        return record

    def _generate(self, key: CacheKey, future: Future, package: ContextPackage) -> None:
        subject_id, _, generation = key
        with self._lock:
            if self._is_current(key):
                self._states[subject_id] = AnalysisState.LLM_IN_FLIGHT

        raw: Optional[str] = None
        error: Optional[Exception] = None
        try:
            raw = self._client.generate(
                package.system_prompt,
                package.user_prompt,
                metadata={"subject_id": subject_id, "generation": generation},
            )
        except Exception as exc:  # noqa: BLE001 - any client failure resolves with the fallback
            error = exc
            LOGGER.warning("Model call for %s failed: %s", subject_id, exc)

        result, quality, terminal = self._interpret(key, package, raw, error)
        now = self._clock.now()
        try:
            self._write_log(key, package, now, raw=raw, quality=quality, result=result, error=error)
        except Exception:  # noqa: BLE001 - a failed log write never blocks the caller
            LOGGER.warning("Could not write analysis log for %s", subject_id, exc_info=True)

        current = False
        try:
            with self._lock:
                if self._pending.get(key) is future:
                    del self._pending[key]
                self._triggered.discard(key)
                current = self._is_current(key)
                if current:
                    self._results[key] = _Cached(value=result, stored_at=now)
                    self._latest[subject_id] = result
                    self._states[subject_id] = terminal
                self._resolutions.append(
                    Resolution(
                        subject_id=subject_id,
                        generation=generation,
                        result=result,
                        quality=quality,
                        stale=not current,
                        resolved_at=now,
                    )
                )
        finally:
            future.set_result(result)
        if not current:
            LOGGER.debug("Discarding stale analysis for %s (generation %d)", subject_id, generation)

    def _interpret(
        self,
        key: CacheKey,
        package: ContextPackage,
        raw: Optional[str],
        error: Optional[Exception],
    ) -> Tuple[AnalysisResult, ReplyQuality, AnalysisState]:
        subject_id = key[0]
        if error is None:
            with self._lock:
                if self._is_current(key):
                    self._states[subject_id] = AnalysisState.PARSE_AND_VALIDATE
            try:
                result, quality = parse_analysis_reply(
                    raw or "", subject_id, settings=self._config.repair, cascade=self._cascade
                )
            except Exception:  # noqa: BLE001 - an uninterpretable reply resolves with the fallback
                LOGGER.exception("Could not interpret the reply for %s", subject_id)
            else:
                if quality is not ReplyQuality.STRICT:
                    LOGGER.info("Reply for %s needed repair (%s)", subject_id, quality.value)
                return result, quality, AnalysisState.CACHED_SUCCESS
        else:
            with self._lock:
                if self._is_current(key):
                    self._states[subject_id] = AnalysisState.TRANSPORT_FAILED
        fallback = create_fallback_response(package.context.subject.title)
        return fallback, ReplyQuality.FALLBACK, AnalysisState.CACHED_FALLBACK

    def _write_log(
        self,
        key: CacheKey,
        package: ContextPackage,
        timestamp: datetime,
        *,
        raw: Optional[str],
        quality: ReplyQuality,
        result: AnalysisResult,
        error: Optional[Exception],
    ) -> None:
        logs_root = self._config.paths.logs_root
        if logs_root is None:
            return
        write_analysis_log(
            logs_root,
            key[0],
            timestamp=timestamp,
            system_prompt=package.system_prompt,
            user_prompt=package.user_prompt,
            raw_reply=raw,
            quality=quality.value,
            result=result.to_payload(),
            error=error,
            generation=key[2],
        )


__all__ = ["AnalysisOrchestrator", "Resolution"]
