"""
Rollback Monitor - Rolling p99 latency per deployment version.

Consumes telemetry records and reports when a version's p99 over the
window exceeds the threshold. It only signals; executing a rollback is
left to deployment tooling.
"""

import bisect
import logging
import math
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from pinrelay.config import config
from pinrelay.models.telemetry import Outcome, TelemetryRecord
from pinrelay.telemetry.sinks import TelemetrySink

logger = logging.getLogger(__name__)


class RollbackStatus(BaseModel):
    """Latency summary for one deployment version."""
    deployment_version: str
    samples: int = Field(0, ge=0, description="Records inside the window")
    failures: int = Field(0, ge=0, description="Records with a non-success outcome")
    p99_ms: Optional[float] = Field(None, description="Nearest-rank p99, None without samples")
    threshold_ms: float
    rollback: bool = Field(False, description="Whether the p99 breaches the threshold")


def _nearest_rank(ordered: Sequence[float], pct: float) -> Optional[float]:
    if not ordered:
        return None
    rank = max(1, math.ceil(pct / 100.0 * len(ordered)))
    return ordered[rank - 1]


def percentile(values: Sequence[float], pct: float) -> Optional[float]:
    """Nearest-rank percentile; None for an empty sequence."""
    return _nearest_rank(sorted(values), pct)


class _VersionWindow:
    """Samples of one version, kept both in arrival order and sorted by duration."""

    def __init__(self):
        self.arrivals: Deque[Tuple[datetime, float, bool]] = deque()
        self.durations: List[float] = []
        self.failures = 0

    def add(self, recorded_at: datetime, duration_ms: float, failed: bool) -> None:
        self.arrivals.append((recorded_at, duration_ms, failed))
        bisect.insort(self.durations, duration_ms)
        self.failures += failed

    def prune(self, cutoff: datetime) -> None:
        while self.arrivals and self.arrivals[0][0] < cutoff:
            _, duration_ms, failed = self.arrivals.popleft()
            del self.durations[bisect.bisect_left(self.durations, duration_ms)]
            self.failures -= failed


class RollbackMonitor(TelemetrySink):
    """
    Tracks durations per deployment version over a rolling window.

    Records are expected in roughly chronological order, which is how
    actors emit them and how JSONL files are appended. Durations are kept
    sorted as they arrive, so reading the p99 never re-sorts the window.
    """

    def __init__(
        self,
        threshold_ms: Optional[float] = None,
        window: Optional[timedelta] = None,
        min_samples: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.threshold_ms = threshold_ms if threshold_ms is not None else config.rollback_p99_threshold_ms
        self.window = window or timedelta(hours=config.rollback_window_hours)
        self.min_samples = min_samples if min_samples is not None else config.rollback_min_samples
        self._clock = clock
        self._windows: Dict[str, _VersionWindow] = {}
        self._signalled: Dict[str, bool] = {}

    def emit(self, record: TelemetryRecord) -> None:
        version = record.deployment_version
        if version not in self._windows:
            self._windows[version] = _VersionWindow()
        self._windows[version].add(record.recorded_at, record.duration_ms, record.outcome != Outcome.SUCCESS)

        status = self.status(version)
        was_signalled = self._signalled.get(version, False)
        if status.rollback and not was_signalled:
            logger.warning(
                "rollback_condition version=%s p99_ms=%.1f threshold_ms=%.1f samples=%d",
                status.deployment_version, status.p99_ms, status.threshold_ms, status.samples,
            )
        self._signalled[version] = status.rollback

    def status(self, version: str) -> RollbackStatus:
        durations: Sequence[float] = ()
        failures = 0
        samples = self._windows.get(version)
        if samples is not None:
            samples.prune(self._clock() - self.window)
            durations, failures = samples.durations, samples.failures

        p99 = _nearest_rank(durations, 99)
        return RollbackStatus(
            deployment_version=version,
            samples=len(durations),
            failures=failures,
            p99_ms=p99,
            threshold_ms=self.threshold_ms,
            rollback=bool(
                p99 is not None
                and len(durations) >= self.min_samples
                and p99 > self.threshold_ms
            ),
        )

    def should_rollback(self, version: str) -> bool:
        return self.status(version).rollback

    def versions(self) -> List[str]:
        return sorted(self._windows)

    def statuses(self) -> List[RollbackStatus]:
        return [self.status(version) for version in self.versions()]
