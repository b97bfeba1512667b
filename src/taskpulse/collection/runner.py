"""Collection cycles with a shared in-flight guard and a periodic timer."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..clock import Clock, SystemClock, ensure_aware
from ..config import CollectionSettings, PipelineConfig
from ..memory.aggregation import AggregationEngine
from ..memory.schema import AggregationResult, ContextualDataPoint, DataKind, TimeRange
from ..memory.store import ContextualDataStore
from ..records import ActivitySnapshot
from .collectors import COLLECTORS, Collector

ActivitySource = Callable[[], ActivitySnapshot]
LOGGER = logging.getLogger(__name__)

_TOGGLES: Dict[DataKind, str] = {
    DataKind.USER_BEHAVIOR: "enable_user_behavior",
    DataKind.TASK_PATTERNS: "enable_task_patterns",
    DataKind.PRODUCTIVITY_METRICS: "enable_productivity_metrics",
    DataKind.ENVIRONMENTAL: "enable_environmental",
    DataKind.TEMPORAL: "enable_temporal",
}


def enabled_kinds(settings: CollectionSettings) -> List[DataKind]:
    return [kind for kind, toggle in _TOGGLES.items() if getattr(settings, toggle)]


class ContextualDataCollector:
    """Runs collection cycles into a store.

    At most one cycle runs at a time. A cycle requested while another is in
    flight (from the timer or a manual call) returns ``0`` immediately.
    """

    def __init__(
        self,
        store: ContextualDataStore,
        source: ActivitySource,
        *,
        config: Optional[PipelineConfig] = None,
        clock: Optional[Clock] = None,
        collectors: Optional[Mapping[DataKind, Collector]] = None,
    ) -> None:
        self._store = store
        self._source = source
        self._config = config or PipelineConfig()
        self._clock = clock or SystemClock()
        self._collectors = dict(collectors or COLLECTORS)
        self._engine = AggregationEngine(store)
        self._guard = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_aggregation: Optional[datetime] = None
        self.last_collection: Optional[datetime] = None
        self.latest_aggregations: Dict[DataKind, AggregationResult] = {}

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        source: ActivitySource,
        *,
        store: Optional[ContextualDataStore] = None,
        clock: Optional[Clock] = None,
    ) -> "ContextualDataCollector":
        if store is None:
            store = ContextualDataStore.from_config(config)
        return cls(store, source, config=config, clock=clock)

    @property
    def store(self) -> ContextualDataStore:
        return self._store

    @property
    def is_collecting(self) -> bool:
        return self._guard.locked()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def collect(self, context: Optional[Mapping[str, Any]] = None) -> int:
        """Run one collection cycle and return the number of new points stored."""
        if not self._guard.acquire(blocking=False):
            LOGGER.debug("Collection cycle already in flight; skipping")
            return 0
        try:
            return self._run_cycle(context)
        finally:
            self._guard.release()

    def _run_cycle(self, context: Optional[Mapping[str, Any]]) -> int:
        now = ensure_aware(self._clock.now())
        try:
            snapshot = self._source()
        except Exception as error:  # noqa: BLE001 - host callback
            LOGGER.warning("Activity source failed during collection: %s", error)
            return 0
        if context:
            snapshot = snapshot.model_copy(update={"context": {**snapshot.context, **context}})

        retention = timedelta(hours=self._config.store.retention_hours)
        points: List[ContextualDataPoint] = []
        for kind in enabled_kinds(self._config.collection):
            collector = self._collectors.get(kind)
            if collector is None:
                continue
            try:
                produced = collector(snapshot, now)
            except Exception:  # noqa: BLE001 - one collector must not sink the cycle
                LOGGER.exception("Collector for %s failed", kind.value)
                continue
            for point in produced:
                if point.expires_at is None:
                    point = point.model_copy(update={"expires_at": point.timestamp + retention})
                points.append(point)

        added = self._store.insert(points)
        self._store.sweep_expired(now)
        self.last_collection = now
        self._refresh_aggregations(now)
        if added:
            LOGGER.info("Collected %d contextual data point(s)", added)
        return added

    def _refresh_aggregations(self, now: datetime) -> None:
        interval = timedelta(minutes=self._config.aggregation.interval_minutes)
        if self._last_aggregation is not None and now - self._last_aggregation < interval:
            return
        window = TimeRange.trailing(now, self._config.store.retention_hours)
        try:
            self.latest_aggregations = self._engine.aggregate_many(enabled_kinds(self._config.collection), window)
        except Exception:  # noqa: BLE001 - keep the previous aggregations and retry next cycle
            LOGGER.exception("Aggregation refresh failed")
            return
        self._last_aggregation = now

    def start(self, interval_minutes: Optional[float] = None) -> None:
        """Start the periodic collection thread."""
        if self.is_running:
            return
        seconds = 60.0 * (interval_minutes or self._config.collection.interval_minutes)
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(seconds,), name="taskpulse-collector", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None

    def _loop(self, seconds: float) -> None:
        while not self._stop.wait(seconds):
            try:
                self.collect()
            except Exception:  # noqa: BLE001 - the timer outlives a failed cycle
                LOGGER.exception("Collection cycle failed")

    def __enter__(self) -> "ContextualDataCollector":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()


__all__ = ["ActivitySource", "ContextualDataCollector", "enabled_kinds"]
