"""
Ramp scheduler.

Drives the number of live virtual users along a staged schedule. Between two
stages the target moves linearly from the previous stage's target to the
current one. The scheduler samples that line once per tick and resizes the
pool: new VUs are spawned with fresh ids, excess VUs are asked to stop after
their in-flight request. It is the only writer of the pool size.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set

from ramp_load.common.errors import ErrorCode
from ramp_load.common.logger import get_logger, StructuredLogger
from ramp_load.common import telemetry

logger = get_logger(__name__)
events = StructuredLogger(__name__)


@dataclass(frozen=True)
class Stage:
    """A time-bounded target VU count."""
    duration: float
    target: int

    def __post_init__(self):
        if self.duration <= 0:
            raise ValueError(f"Stage duration must be > 0, got {self.duration}")
        if self.target < 0:
            raise ValueError(f"Stage target must be >= 0, got {self.target}")


class Worker(Protocol):
    """What the scheduler needs from a virtual user."""
    def stop(self) -> None: ...
    async def run(self) -> None: ...


@dataclass(frozen=True)
class SchedulerStatus:
    """Sampled once per tick and handed to the on_tick callback."""
    elapsed: float
    stage_index: int
    target: int
    live: int
    draining: int
    vus_max: int


def total_duration(stages: Sequence[Stage]) -> float:
    return sum(stage.duration for stage in stages)


def stage_at(stages: Sequence[Stage], elapsed: float) -> int:
    """
    Index of the stage running at ``elapsed`` seconds.

    Returns ``len(stages)`` once the schedule is exhausted.
    """
    end = 0.0
    for index, stage in enumerate(stages):
        end += stage.duration
        if elapsed < end:
            return index
    return len(stages)


def interpolate_target(stages: Sequence[Stage], elapsed: float) -> int:
    """
    Target VU count at ``elapsed`` seconds into the schedule.

    The target moves linearly from the previous stage's target (0 before the
    first stage) to the current stage's target over the stage's duration.
    The result always lies between those two targets.
    """
    if not stages:
        return 0
    if elapsed <= 0:
        return 0

    previous = 0
    start = 0.0
    for stage in stages:
        end = start + stage.duration
        if elapsed < end:
            progress = (elapsed - start) / stage.duration
            value = previous + (stage.target - previous) * progress
            low, high = sorted((previous, stage.target))
            return max(low, min(high, int(round(value))))
        previous = stage.target
        start = end
    return stages[-1].target


class RampScheduler:
    """
    Resizes a pool of workers to follow a schedule.

    Args:
        stages: The schedule. Copied into a tuple; never modified.
        vu_factory: Called with the next unused VU id, returns a worker.
        tick_interval: Seconds between samples of the ramp.
        graceful_stop: Seconds to wait for workers at shutdown before
            cancelling them.
        on_tick: Optional callback receiving a SchedulerStatus every tick.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        vu_factory: Callable[[int], Worker],
        tick_interval: float = 1.0,
        graceful_stop: float = 30.0,
        on_tick: Optional[Callable[[SchedulerStatus], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not stages:
            raise ValueError("Schedule must contain at least one stage")
        if tick_interval <= 0:
            raise ValueError("tick_interval must be > 0")
        self.stages = tuple(stages)
        self.tick_interval = tick_interval
        self.graceful_stop = graceful_stop
        self._vu_factory = vu_factory
        self._on_tick = on_tick
        self._clock = clock

        self._live: List[Worker] = []
        self._tasks: Dict[Worker, asyncio.Task] = {}
        self._draining: Set[Worker] = set()
        self._next_id = 1
        self._vus_max = 0
        self._stage_index = 0
        self._started_at: Optional[float] = None
        self._finished = False
        self._stop_requested = False
        self._stop_event: Optional[asyncio.Event] = None
        self.stop_reason: Optional[str] = None

    @property
    def live_count(self) -> int:
        return len(self._live)

    @property
    def draining_count(self) -> int:
        return len(self._draining)

    @property
    def vus_max(self) -> int:
        return self._vus_max

    @property
    def stage_index(self) -> int:
        return self._stage_index

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def stop(self, reason: str = "stopped") -> None:
        """Request an early end of the run. Safe to call more than once."""
        if self._stop_requested:
            return
        self._stop_requested = True
        self.stop_reason = reason
        logger.info(f"Scheduler stop requested: {reason}")
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> None:
        """Run the whole schedule, then stop every worker."""
        self._stop_event = asyncio.Event()
        if self._stop_requested:
            self._stop_event.set()
        self._started_at = self._clock()
        duration = total_duration(self.stages)
        events.info("schedule_started", stages=len(self.stages), duration_s=duration)

        try:
            while not self._stop_event.is_set():
                elapsed = self.elapsed
                self._advance_stages(elapsed)
                if self._stage_index >= len(self.stages):
                    break

                target = interpolate_target(self.stages, elapsed)
                self._resize(target)
                self._notify(elapsed, target)

                boundary = total_duration(self.stages[: self._stage_index + 1])
                wait = min(self.tick_interval, max(0.0, boundary - elapsed))
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._shutdown()

    def _advance_stages(self, elapsed: float) -> None:
        """Apply the final target of every stage whose end has passed."""
        current = min(stage_at(self.stages, elapsed), len(self.stages))
        while self._stage_index < current:
            stage = self.stages[self._stage_index]
            self._resize(stage.target)
            events.info(
                "stage_completed",
                stage=self._stage_index,
                target=stage.target,
                live=self.live_count,
                elapsed_s=round(elapsed, 3),
            )
            self._stage_index += 1

    def _resize(self, target: int) -> None:
        while len(self._live) < target:
            self._spawn()
        while len(self._live) > target:
            # Most recently spawned VUs go first
            worker = self._live.pop()
            worker.stop()
            self._draining.add(worker)
            telemetry.record_vu_change(-1)

    def _spawn(self) -> None:
        vu_id = self._next_id
        self._next_id += 1
        worker = self._vu_factory(vu_id)
        task = asyncio.create_task(worker.run(), name=f"vu-{vu_id}")
        self._tasks[worker] = task
        task.add_done_callback(lambda t, w=worker: self._on_worker_done(w, t))
        self._live.append(worker)
        self._vus_max = max(self._vus_max, len(self._live))
        telemetry.record_vu_change(1)

    def _on_worker_done(self, worker: Worker, task: asyncio.Task) -> None:
        self._tasks.pop(worker, None)
        self._draining.discard(worker)
        if worker in self._live:
            # Exited without being asked to
            self._live.remove(worker)
            telemetry.record_vu_change(-1)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Worker {worker!r} crashed: {task.exception()!r}")

    def _notify(self, elapsed: float, target: int) -> None:
        if self._on_tick is None:
            return
        self._on_tick(SchedulerStatus(
            elapsed=elapsed,
            stage_index=self._stage_index,
            target=target,
            live=self.live_count,
            draining=self.draining_count,
            vus_max=self._vus_max,
        ))

    async def _shutdown(self) -> None:
        self._resize(0)
        pending = list(self._tasks.values())
        if pending:
            logger.info(f"Waiting up to {self.graceful_stop}s for {len(pending)} VUs to finish")
            done, not_done = await asyncio.wait(pending, timeout=self.graceful_stop)
            if not_done:
                logger.warning(
                    f"[{ErrorCode.VU_INTERRUPTED}] {len(not_done)} VUs did not finish within "
                    f"{self.graceful_stop}s and were interrupted; their in-flight requests count as network errors"
                )
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
        self._finished = True
        events.info(
            "schedule_finished",
            elapsed_s=round(self.elapsed, 3),
            vus_max=self._vus_max,
            stopped_early=self._stop_requested,
        )
