"""
Result aggregation.

Virtual users push RequestResult records onto an asyncio.Queue; a single
consumer task drains it into a ResultAggregator. record() is also safe to
call directly from several threads, and snapshot() returns a consistent
point-in-time copy taken under the same lock.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Sequence, Tuple

from ramp_load.common.logger import get_logger
from ramp_load.common import telemetry
from ramp_load.engine.checks import CheckMap, apply_checks, default_checks

logger = get_logger(__name__)

REPORTED_PERCENTILES = (50.0, 90.0, 95.0, 99.0)


@dataclass(frozen=True)
class RequestResult:
    """
    Outcome of one request.

    Attributes:
        vu_id: Virtual user that issued the request.
        iteration: Iteration number within that VU.
        status_code: HTTP status, 0 when no response was received.
        latency_ms: Elapsed time until the response (or the failure).
        network_error: True when no usable response arrived (timeouts, refused
            connections, undecodable bodies, requests cancelled at shutdown).
        error: Short description of the transport failure, if any.
    """
    vu_id: int
    iteration: int
    status_code: int
    latency_ms: float
    network_error: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        """Whether this request counts towards http_req_failed."""
        return self.network_error or not (200 <= self.status_code < 400)


@dataclass(frozen=True)
class CheckCounts:
    passes: int = 0
    fails: int = 0

    @property
    def total(self) -> int:
        return self.passes + self.fails

    @property
    def rate(self) -> float:
        return self.passes / self.total if self.total else 0.0


@dataclass(frozen=True)
class AggregateStats:
    """Read-only snapshot of everything recorded so far."""
    total_count: int = 0
    failed_count: int = 0
    network_error_count: int = 0
    status_counts: Dict[int, int] = field(default_factory=dict)
    checks: Dict[str, CheckCounts] = field(default_factory=dict)
    latency_avg: float = 0.0
    latency_min: float = 0.0
    latency_max: float = 0.0
    latency_med: float = 0.0
    latency_percentiles: Dict[float, float] = field(default_factory=dict)
    latencies_ms: Tuple[float, ...] = ()
    duration_s: float = 0.0

    @property
    def failure_rate(self) -> float:
        return self.failed_count / self.total_count if self.total_count else 0.0

    @property
    def checks_passes(self) -> int:
        return sum(c.passes for c in self.checks.values())

    @property
    def checks_fails(self) -> int:
        return sum(c.fails for c in self.checks.values())

    @property
    def checks_rate(self) -> float:
        total = self.checks_passes + self.checks_fails
        return self.checks_passes / total if total else 0.0

    @property
    def requests_per_second(self) -> float:
        return self.total_count / self.duration_s if self.duration_s > 0 else 0.0

    def latency_percentile(self, pct: float) -> float:
        """Latency percentile in ms, computed from the stored samples."""
        if pct in self.latency_percentiles:
            return self.latency_percentiles[pct]
        return percentile(self.latencies_ms, pct)


@dataclass(frozen=True)
class RequestCounters:
    """Running request counts, cheap enough to read every tick."""
    total_count: int = 0
    failed_count: int = 0
    network_error_count: int = 0


def percentile(sorted_values: Sequence[float], pct: float) -> float:
    """
    Percentile of already-sorted values, interpolating between closest ranks.

    Returns 0.0 for an empty sequence.
    """
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    rank = (pct / 100.0) * (len(sorted_values) - 1)
    lower = int(math.floor(rank))
    upper = min(lower + 1, len(sorted_values) - 1)
    weight = rank - lower
    return float(sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * weight)


class ResultAggregator:
    """
    Thread-safe running statistics over RequestResults.

    Args:
        checks: Named predicates applied to every result. Defaults to
            default_checks().
        clock: Monotonic clock used to measure the recording window.
    """

    def __init__(self, checks: Optional[CheckMap] = None, clock=time.monotonic):
        self.checks: CheckMap = checks if checks is not None else default_checks()
        self._clock = clock
        self._lock = Lock()
        self._started_at: Optional[float] = None
        self._stopped_at: Optional[float] = None
        self._total = 0
        self._failed = 0
        self._network_errors = 0
        self._status_counts: Dict[int, int] = {}
        self._check_passes: Dict[str, int] = {name: 0 for name in self.checks}
        self._check_fails: Dict[str, int] = {name: 0 for name in self.checks}
        self._latencies: List[float] = []
        self._latency_sum = 0.0

    def start(self) -> None:
        """Mark the beginning of the measurement window."""
        with self._lock:
            self._started_at = self._clock()
            self._stopped_at = None

    def stop(self) -> None:
        """Freeze the measurement window used for per-second rates."""
        with self._lock:
            self._stopped_at = self._clock()

    def record(self, result: RequestResult, checks: Optional[CheckMap] = None) -> None:
        """
        Count one result.

        Args:
            result: The request outcome.
            checks: Predicates to apply instead of the aggregator's own.
        """
        outcomes = list(apply_checks(result, checks if checks is not None else self.checks))
        failed = result.failed

        with self._lock:
            self._total += 1
            if failed:
                self._failed += 1
            if result.network_error:
                self._network_errors += 1
            self._status_counts[result.status_code] = self._status_counts.get(result.status_code, 0) + 1
            for name, passed in outcomes:
                if passed:
                    self._check_passes[name] = self._check_passes.get(name, 0) + 1
                else:
                    self._check_fails[name] = self._check_fails.get(name, 0) + 1
            self._latencies.append(result.latency_ms)
            self._latency_sum += result.latency_ms

        telemetry.record_request(result.status_code, result.network_error, result.latency_ms, failed)

    async def consume(self, queue: "asyncio.Queue[RequestResult]") -> None:
        """Drain results from ``queue`` until cancelled."""
        while True:
            result = await queue.get()
            try:
                self.record(result)
            except Exception as e:
                # A broken check predicate must not stall the queue
                logger.error(f"Failed to record result from VU {result.vu_id}: {e}", exc_info=True)
            finally:
                queue.task_done()

    def counters(self) -> RequestCounters:
        """Request counts only; unlike snapshot() this does not copy or sort latencies."""
        with self._lock:
            return RequestCounters(self._total, self._failed, self._network_errors)

    def snapshot(self) -> AggregateStats:
        """Consistent point-in-time copy of the statistics."""
        with self._lock:
            latencies = sorted(self._latencies)
            total = self._total
            latency_sum = self._latency_sum
            names = list(dict.fromkeys(list(self._check_passes) + list(self._check_fails)))
            checks = {
                name: CheckCounts(self._check_passes.get(name, 0), self._check_fails.get(name, 0))
                for name in names
            }
            status_counts = dict(self._status_counts)
            failed = self._failed
            network_errors = self._network_errors
            if self._started_at is None:
                duration = 0.0
            else:
                end = self._stopped_at if self._stopped_at is not None else self._clock()
                duration = max(0.0, end - self._started_at)

        return AggregateStats(
            total_count=total,
            failed_count=failed,
            network_error_count=network_errors,
            status_counts=status_counts,
            checks=checks,
            latency_avg=latency_sum / total if total else 0.0,
            latency_min=latencies[0] if latencies else 0.0,
            latency_max=latencies[-1] if latencies else 0.0,
            latency_med=percentile(latencies, 50.0),
            latency_percentiles={p: percentile(latencies, p) for p in REPORTED_PERCENTILES},
            latencies_ms=tuple(latencies),
            duration_s=duration,
        )
