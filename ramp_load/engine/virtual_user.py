"""
Virtual users.

A virtual user loops generate -> POST -> record until it is told to stop.
Request errors become failed results; nothing a single request does can
end the loop. A request cut short by cancellation is still recorded.
"""

import asyncio
import base64
import json
import time
from dataclasses import dataclass
from typing import Dict, Optional, Union

import httpx

from ramp_load.common.errors import ErrorCode
from ramp_load.common.logger import get_logger
from ramp_load.engine.aggregator import RequestResult
from ramp_load.engine.payload import PayloadGenerator

logger = get_logger(__name__)

NETWORK_ERROR_STATUS = 0
CANCELLED_ERROR = "Cancelled"


def basic_auth_headers(username: str, password: str) -> Dict[str, str]:
    """Request headers shared by every virtual user."""
    credentials = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return {
        "Content-Type": "application/json",
        "Authorization": f"Basic {credentials}",
    }


@dataclass
class VirtualUserState:
    id: int
    iteration_count: int = 0


class VirtualUser:
    """
    One simulated client.

    Args:
        vu_id: Unique id assigned by the scheduler.
        client: Shared httpx.AsyncClient.
        url: Target URL.
        headers: Precomputed request headers (see basic_auth_headers()).
        generator: Payload generator.
        results: Queue the VU sends its RequestResults to.
        timeout: Per-request timeout in seconds (None keeps the client's).
        min_iteration_duration: Pace iterations to at least this many seconds.
    """

    def __init__(
        self,
        vu_id: int,
        client: httpx.AsyncClient,
        url: str,
        headers: Dict[str, str],
        generator: PayloadGenerator,
        results: "asyncio.Queue[RequestResult]",
        timeout: Optional[float] = None,
        min_iteration_duration: float = 0.0,
    ):
        self.state = VirtualUserState(id=vu_id)
        self._client = client
        self._url = url
        self._headers = headers
        self._generator = generator
        self._results = results
        self._timeout: Union[float, httpx.Timeout, None] = timeout
        self._min_iteration_duration = min_iteration_duration
        self._stop_event = asyncio.Event()

    @property
    def id(self) -> int:
        return self.state.id

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Finish the in-flight request, then exit the loop."""
        self._stop_event.set()

    async def run(self) -> None:
        logger.debug(f"VU {self.id} started")
        while not self._stop_event.is_set():
            started = time.monotonic()
            result = await self.iterate()
            await self._results.put(result)
            await self._pace(started)
        logger.debug(f"VU {self.id} stopped after {self.state.iteration_count} iterations")

    async def iterate(self) -> RequestResult:
        """Run one iteration and return its result."""
        iteration = self.state.iteration_count
        order = self._generator.generate(self.id, iteration)
        body = json.dumps(order.to_dict())

        kwargs = {"content": body, "headers": self._headers}
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout

        started = time.perf_counter()
        try:
            response = await self._client.post(self._url, **kwargs)
            latency_ms = (time.perf_counter() - started) * 1000.0
            result = RequestResult(
                vu_id=self.id,
                iteration=iteration,
                status_code=response.status_code,
                latency_ms=latency_ms,
            )
        except httpx.RequestError as e:
            latency_ms = (time.perf_counter() - started) * 1000.0
            logger.debug(
                f"[{ErrorCode.TRANSPORT_FAILURE}] VU {self.id} iteration {iteration}: "
                f"{type(e).__name__}: {e}"
            )
            result = self._network_error(iteration, latency_ms, type(e).__name__)
        except asyncio.CancelledError:
            # Interrupted at shutdown; the request still counts, as a network error
            latency_ms = (time.perf_counter() - started) * 1000.0
            logger.debug(f"[{ErrorCode.VU_INTERRUPTED}] VU {self.id} iteration {iteration} cancelled in flight")
            self.state.iteration_count += 1
            self._results.put_nowait(self._network_error(iteration, latency_ms, CANCELLED_ERROR))
            raise

        self.state.iteration_count += 1
        return result

    def _network_error(self, iteration: int, latency_ms: float, error: str) -> RequestResult:
        return RequestResult(
            vu_id=self.id,
            iteration=iteration,
            status_code=NETWORK_ERROR_STATUS,
            latency_ms=latency_ms,
            network_error=True,
            error=error,
        )

    async def _pace(self, started: float) -> None:
        remaining = self._min_iteration_duration - (time.monotonic() - started)
        if remaining <= 0 or self._stop_event.is_set():
            # Always yield once so a transport that never suspends cannot starve the scheduler
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            pass

    def __repr__(self) -> str:
        return f"VirtualUser(id={self.id}, iterations={self.state.iteration_count}, stopping={self.stopping})"
