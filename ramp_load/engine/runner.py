"""
Load test runner.

Wires a LoadPlan to the engine: one shared httpx.AsyncClient, a result queue
drained by the ResultAggregator, a RampScheduler spawning VirtualUsers, and a
final ThresholdEvaluator pass. A RunReport is produced even when the run is
stopped early.
"""

import asyncio
import signal
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import httpx

from ramp_load.common.errors import ErrorCode
from ramp_load.common.telemetry import get_tracer
from ramp_load.common.logger import get_logger, StructuredLogger
from ramp_load.config_loader import LoadPlan
from ramp_load.engine.aggregator import AggregateStats, RequestResult, ResultAggregator
from ramp_load.engine.payload import PayloadGenerator
from ramp_load.engine.scheduler import RampScheduler, SchedulerStatus
from ramp_load.engine.thresholds import ThresholdEvaluator, ThresholdResult
from ramp_load.engine.virtual_user import VirtualUser, basic_auth_headers

logger = get_logger(__name__)
events = StructuredLogger(__name__)

# Headroom past the request timeout for the response to be recorded
SHUTDOWN_MARGIN_S = 1.0


@dataclass
class RunStatus:
    """Live view of a run, passed to the progress callback every tick."""
    scheduler: SchedulerStatus
    requests: int
    failed: int
    stage_count: int


@dataclass
class RunReport:
    """
    Final outcome of a run.

    Attributes:
        stats: Aggregated statistics snapshot.
        thresholds: Threshold results keyed by rule name.
        passed: True when every threshold passed. A run with thresholds but
            no recorded requests never passes.
        vus_max: Peak number of concurrently live VUs.
        duration_s: Wall time of the run.
        aborted: True if the run ended before the schedule finished.
        abort_reason: Why the run ended early.
    """
    stats: AggregateStats
    thresholds: Dict[str, ThresholdResult] = field(default_factory=dict)
    passed: bool = True
    vus_max: int = 0
    duration_s: float = 0.0
    aborted: bool = False
    abort_reason: Optional[str] = None
    plan_name: str = ""
    target_url: str = ""

    @property
    def failed_thresholds(self) -> List[ThresholdResult]:
        return [result for result in self.thresholds.values() if not result.passed]


class LoadTestRunner:
    """
    Runs one LoadPlan.

    Args:
        plan: Validated plan.
        client: Optional pre-built httpx.AsyncClient (tests pass one backed by
            httpx.MockTransport). When omitted the runner creates and closes
            its own client.
        generator: Optional payload generator (e.g. with a fixed clock).
        on_progress: Callback receiving a RunStatus every scheduler tick.
        handle_signals: Route SIGINT/SIGTERM to a graceful stop.
    """

    def __init__(
        self,
        plan: LoadPlan,
        client: Optional[httpx.AsyncClient] = None,
        generator: Optional[PayloadGenerator] = None,
        on_progress: Optional[Callable[[RunStatus], None]] = None,
        handle_signals: bool = False,
    ):
        self.plan = plan
        self._client = client
        self._generator = generator or PayloadGenerator()
        self._on_progress = on_progress
        self._handle_signals = handle_signals
        self._rules = plan.threshold_rules()
        self._has_abort_rules = any(rule.abort_on_fail for rule in self._rules)
        self._evaluator = ThresholdEvaluator()
        self.aggregator = ResultAggregator(checks=plan.check_map())
        self.scheduler: Optional[RampScheduler] = None
        self._stop_requested: Optional[str] = None

    def stop(self, reason: str = "stopped by user") -> None:
        """Stop the run gracefully; in-flight requests still complete."""
        self._stop_requested = reason
        if self.scheduler is not None:
            self.scheduler.stop(reason)

    @property
    def graceful_stop(self) -> float:
        """
        Seconds the scheduler waits for VUs at shutdown.

        Never shorter than the request timeout plus SHUTDOWN_MARGIN_S.
        """
        return max(self.plan.options.graceful_stop, self.plan.target.timeout + SHUTDOWN_MARGIN_S)

    def _build_client(self) -> httpx.AsyncClient:
        peak = max(1, self.plan.max_vus)
        return httpx.AsyncClient(
            timeout=self.plan.target.timeout,
            limits=httpx.Limits(max_connections=peak, max_keepalive_connections=peak),
        )

    async def run(self) -> RunReport:
        """Execute the plan and return its report."""
        owns_client = self._client is None
        client = self._client or self._build_client()
        queue: "asyncio.Queue[RequestResult]" = asyncio.Queue()
        headers = basic_auth_headers(self.plan.target.username, self.plan.target.password)
        options = self.plan.options

        def vu_factory(vu_id: int) -> VirtualUser:
            return VirtualUser(
                vu_id=vu_id,
                client=client,
                url=self.plan.target.url,
                headers=headers,
                generator=self._generator,
                results=queue,
                timeout=self.plan.target.timeout,
                min_iteration_duration=options.min_iteration_duration,
            )

        self.scheduler = RampScheduler(
            stages=self.plan.schedule(),
            vu_factory=vu_factory,
            tick_interval=options.tick_interval,
            graceful_stop=self.graceful_stop,
            on_tick=self._on_tick,
        )
        if self._stop_requested:
            self.scheduler.stop(self._stop_requested)

        events.info(
            "run_started",
            plan=self.plan.name,
            url=self.plan.target.url,
            stages=len(self.plan.stages),
            max_vus=self.plan.max_vus,
            thresholds=[rule.name for rule in self._rules],
        )
        started = time.monotonic()
        self.aggregator.start()
        consumer = asyncio.create_task(self.aggregator.consume(queue), name="result-aggregator")
        installed = self._install_signal_handlers()

        try:
            with get_tracer().start_as_current_span("load_test.run") as span:
                span.set_attribute("plan.name", self.plan.name)
                span.set_attribute("plan.max_vus", self.plan.max_vus)
                await self.scheduler.run()
                # Every VU has exited; flush what they sent
                await queue.join()
                span.set_attribute("http_reqs", self.aggregator.counters().total_count)
        finally:
            self._remove_signal_handlers(installed)
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
            self.aggregator.stop()
            if owns_client:
                await client.aclose()

        return self._build_report(time.monotonic() - started)

    def _on_tick(self, status: SchedulerStatus) -> None:
        if self._has_abort_rules:
            self._check_abort_rules()

        if self._on_progress is not None:
            counters = self.aggregator.counters()
            self._on_progress(RunStatus(
                scheduler=status,
                requests=counters.total_count,
                failed=counters.failed_count,
                stage_count=len(self.plan.stages),
            ))

    def _check_abort_rules(self) -> None:
        if not self.aggregator.counters().total_count:
            return
        snapshot = self.aggregator.snapshot()
        failing = self._evaluator.failing_abort_rules(snapshot, self._rules)
        if failing:
            names = ", ".join(result.rule.name for result in failing)
            logger.warning(f"[{ErrorCode.RUN_ABORTED}] Aborting run, threshold failed: {names}")
            self.scheduler.stop(f"threshold failed: {names}")

    def _build_report(self, duration: float) -> RunReport:
        stats = self.aggregator.snapshot()
        results = self._evaluator.evaluate(stats, self._rules)
        passed = self._evaluator.verdict(results)
        aborted = self.scheduler.stop_reason is not None
        for result in results.values():
            if not result.passed:
                logger.warning(
                    f"[{ErrorCode.THRESHOLD_BREACHED}] {result.rule.name} failed "
                    f"(observed {result.observed:.4f})"
                )
        if stats.total_count == 0 and self._rules:
            # Thresholds over no data prove nothing
            logger.warning(f"[{ErrorCode.NO_REQUESTS}] No requests were recorded; failing the run")
            passed = False
        report = RunReport(
            stats=stats,
            thresholds=results,
            passed=passed,
            vus_max=self.scheduler.vus_max,
            duration_s=duration,
            aborted=aborted,
            abort_reason=self.scheduler.stop_reason,
            plan_name=self.plan.name,
            target_url=self.plan.target.url,
        )
        events.info(
            "run_finished",
            passed=passed,
            requests=stats.total_count,
            failed=stats.failed_count,
            p95_ms=round(stats.latency_percentile(95.0), 3),
            aborted=aborted,
            duration_s=round(duration, 3),
        )
        return report

    def _install_signal_handlers(self) -> List[int]:
        if not self._handle_signals:
            return []
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop, f"received {sig.name}")
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # add_signal_handler is unavailable on Windows event loops
                logger.debug(f"Cannot install handler for {sig.name}")
        return installed

    def _remove_signal_handlers(self, installed: List[int]) -> None:
        if not installed:
            return
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)
