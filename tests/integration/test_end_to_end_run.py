"""
End-to-end runs of the engine against httpx.MockTransport.

The production schedule (30s -> 50, 30s -> 100, 30s -> 200, 30s -> 400,
20s -> 0) is compressed to about 1.5 seconds and a tenth of the VUs; the
thresholds are the production ones.
"""

import asyncio
import itertools

import httpx
import pytest

from ramp_load.config_loader import build_plan
from ramp_load.engine.payload import PayloadGenerator
from ramp_load.engine.runner import LoadTestRunner

pytestmark = pytest.mark.integration

URL = "http://orders.test/api/orders"


def _plan(**overrides):
    data = {
        "metadata": {"name": "scaled orders ramp"},
        "target": {"url": URL, "username": "user", "password": "secret", "timeout": "2s"},
        "stages": [
            {"duration": "300ms", "target": 5},
            {"duration": "300ms", "target": 10},
            {"duration": "300ms", "target": 20},
            {"duration": "300ms", "target": 40},
            {"duration": "200ms", "target": 0},
        ],
        "thresholds": {
            "http_req_duration": ["p(95)<500"],
            "http_req_failed": ["rate<0.01"],
        },
        "options": {
            "tick_interval": "50ms",
            "graceful_stop": "2s",
            "min_iteration_duration": "10ms",
        },
    }
    data.update(overrides)
    return build_plan(data)


async def _run(plan, handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with client:
        runner = LoadTestRunner(plan, client=client, generator=PayloadGenerator(clock=lambda: 1), **kwargs)
        report = await asyncio.wait_for(runner.run(), timeout=30.0)
    return runner, report


@pytest.mark.asyncio
async def test_healthy_service_passes():
    calls = itertools.count(1)

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.002)
        # One in every two hundred responses is a 503
        return httpx.Response(503 if next(calls) % 200 == 0 else 200)

    runner, report = await _run(_plan(), handler)
    stats = report.stats

    assert report.passed is True
    assert report.aborted is False
    assert report.vus_max == 40
    assert stats.total_count > 0
    assert set(stats.status_counts) <= {200, 503}
    assert stats.failure_rate < 0.01
    assert stats.checks["200 OK"].passes == stats.status_counts[200]
    assert stats.checks["[NETWORK ERROR]"].fails == 0
    assert all(result.passed for result in report.thresholds.values())
    assert runner.scheduler.live_count == 0
    assert stats.latency_percentile(95.0) < 500


@pytest.mark.asyncio
async def test_unauthorized_service_fails():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.001)
        return httpx.Response(401)

    _, report = await _run(_plan(), handler)
    stats = report.stats
    failed = report.thresholds["http_req_failed: rate<0.01"]

    assert report.passed is False
    assert failed.passed is False
    assert failed.observed == 1.0
    assert report.thresholds["http_req_duration: p(95)<500"].passed is True
    assert stats.checks["401 Unauthorized"].fails == stats.total_count
    assert stats.checks["200 OK"].passes == 0
    assert stats.checks["502 Bad Gateway"].fails == 0


@pytest.mark.asyncio
async def test_every_request_carries_auth_and_unique_titles():
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.headers["Authorization"], request.headers["Content-Type"], request.content))
        return httpx.Response(200)

    plan = _plan(stages=[{"duration": "200ms", "target": 4}, {"duration": "100ms", "target": 0}])
    _, report = await _run(plan, handler)

    assert len(seen) == report.stats.total_count
    assert {auth for auth, _, _ in seen} == {"Basic dXNlcjpzZWNyZXQ="}
    assert {ctype for _, ctype, _ in seen} == {"application/json"}
    # Clock is fixed, so titles differ only by VU id and iteration
    assert len({body for _, _, body in seen}) == len(seen)


@pytest.mark.asyncio
async def test_network_errors_are_recorded_not_raised():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.001)
        raise httpx.ConnectError("connection refused", request=request)

    plan = _plan(stages=[{"duration": "200ms", "target": 3}, {"duration": "100ms", "target": 0}])
    _, report = await _run(plan, handler)
    stats = report.stats

    assert stats.total_count > 0
    assert stats.network_error_count == stats.total_count
    assert stats.status_counts == {0: stats.total_count}
    assert stats.checks["[NETWORK ERROR]"].fails == stats.total_count
    assert report.passed is False


@pytest.mark.asyncio
async def test_abort_on_fail_ends_run_early():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.001)
        return httpx.Response(500)

    plan = _plan(
        stages=[{"duration": "10s", "target": 5}, {"duration": "10s", "target": 5}],
        thresholds={"http_req_failed": [{"threshold": "rate<0.5", "abort_on_fail": True}]},
    )
    _, report = await _run(plan, handler)

    assert report.aborted is True
    assert "threshold failed" in report.abort_reason
    assert report.passed is False
    assert report.duration_s < 10.0


@pytest.mark.asyncio
async def test_stop_from_progress_callback():
    runner_ref = {}
    statuses = []

    def on_progress(status):
        statuses.append(status)
        if status.requests >= 20:
            runner_ref["runner"].stop("enough")

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.001)
        return httpx.Response(200)

    plan = _plan(stages=[{"duration": "20s", "target": 3}])
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with client:
        runner = LoadTestRunner(plan, client=client, on_progress=on_progress)
        runner_ref["runner"] = runner
        report = await asyncio.wait_for(runner.run(), timeout=30.0)

    assert report.aborted is True
    assert report.abort_reason == "enough"
    assert report.passed is True
    assert statuses
    assert all(status.stage_count == 1 for status in statuses)
    # Every result sent before shutdown was aggregated
    assert report.stats.total_count >= 20


@pytest.mark.asyncio
async def test_undecodable_responses_are_counted_and_fail():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.001)
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip")

    plan = _plan(stages=[{"duration": "200ms", "target": 3}, {"duration": "100ms", "target": 0}])
    _, report = await _run(plan, handler)
    stats = report.stats

    assert stats.total_count > 0
    assert stats.network_error_count == stats.total_count
    assert report.passed is False


@pytest.mark.asyncio
async def test_shutdown_waits_for_in_flight_requests():
    sent = []

    async def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        await asyncio.sleep(0.5)
        return httpx.Response(200)

    # graceful_stop is shorter than a request; the request timeout wins
    options = {"tick_interval": "50ms", "graceful_stop": "50ms"}
    plan = _plan(stages=[{"duration": "100ms", "target": 3}], options=options)
    runner, report = await _run(plan, handler)
    stats = report.stats

    assert runner.graceful_stop == pytest.approx(3.0)
    assert runner.scheduler.graceful_stop == runner.graceful_stop
    assert report.vus_max == 3
    assert stats.total_count == len(sent) >= 3
    assert stats.network_error_count == 0
    assert stats.status_counts == {200: stats.total_count}
    assert report.passed is True


@pytest.mark.asyncio
async def test_run_without_requests_fails():
    plan = _plan()
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    async with client:
        runner = LoadTestRunner(plan, client=client)
        runner.stop("cancelled before start")
        report = await asyncio.wait_for(runner.run(), timeout=10.0)

    assert report.stats.total_count == 0
    assert report.aborted is True
    # Every threshold holds against zero, but no traffic is not a pass
    assert all(result.passed for result in report.thresholds.values())
    assert report.passed is False


@pytest.mark.asyncio
async def test_run_without_requests_or_thresholds_passes():
    plan = _plan(thresholds={})
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    async with client:
        runner = LoadTestRunner(plan, client=client)
        runner.stop("cancelled before start")
        report = await asyncio.wait_for(runner.run(), timeout=10.0)

    assert report.stats.total_count == 0
    assert report.passed is True


@pytest.mark.asyncio
@pytest.mark.parametrize("thresholds,max_snapshots_per_tick", [
    ({"http_req_failed": ["rate<0.5"]}, 0),
    ({"http_req_failed": [{"threshold": "rate<0.5", "abort_on_fail": True}]}, 1),
])
async def test_progress_reads_counters_not_snapshots(thresholds, max_snapshots_per_tick):
    statuses = []
    snapshots = []

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.001)
        return httpx.Response(200)

    plan = _plan(stages=[{"duration": "300ms", "target": 3}, {"duration": "100ms", "target": 0}], thresholds=thresholds)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with client:
        runner = LoadTestRunner(plan, client=client, on_progress=statuses.append)
        snapshot = runner.aggregator.snapshot

        def counting_snapshot():
            snapshots.append(1)
            return snapshot()

        runner.aggregator.snapshot = counting_snapshot
        report = await asyncio.wait_for(runner.run(), timeout=30.0)

    assert statuses
    # One snapshot per tick at most, plus the final report
    assert len(snapshots) <= max_snapshots_per_tick * len(statuses) + 1
    assert [s.requests for s in statuses] == sorted(s.requests for s in statuses)
    assert statuses[-1].requests <= report.stats.total_count
    assert report.passed is True
