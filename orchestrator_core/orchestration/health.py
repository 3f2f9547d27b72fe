"""
Health probing, readiness waiting and the recurring health-check loop.

Readiness means a service's health endpoint answers 2xx, not merely that its
process exists. Every network call here carries its own timeout; a failed
probe is a transient condition that is reflected as ``disconnected`` status
and never raised to callers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import aiohttp

from orchestrator_core.core.errors import ProbeError, ReadinessTimeout
from orchestrator_core.orchestration.state import ServiceStatus, ServiceTable

logger = logging.getLogger(__name__)

PublishFn = Callable[[str], Awaitable[None]]


# ============================================================================
# HEALTH PROBER
# ============================================================================

@dataclass
class ProbeResult:
    """Outcome of a single health probe."""
    url: str
    healthy: bool
    status_code: Optional[int] = None
    latency_ms: float = 0.0
    error: Optional[str] = None


class HealthProber:
    """Issues single bounded-timeout GET probes against health endpoints."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _fetch(self, url: str, timeout: float) -> int:
        session = await self._get_session()
        try:
            async with session.get(
                url, timeout=aiohttp.ClientTimeout(total=timeout)
            ) as response:
                if not 200 <= response.status < 300:
                    raise ProbeError(url, f"HTTP {response.status}", response.status)
                return response.status
        except asyncio.TimeoutError:
            raise ProbeError(url, f"timed out after {timeout:.1f}s") from None
        except aiohttp.ClientError as e:
            raise ProbeError(url, str(e) or type(e).__name__) from e

    async def probe(self, url: str, timeout: Optional[float] = None) -> ProbeResult:
        """
        Probe ``url`` once.

        Args:
            url: Health check URL
            timeout: Per-attempt timeout (defaults to the prober's timeout)

        Returns:
            ProbeResult; ``healthy`` is True only for a 2xx answer
        """
        timeout = self.timeout if timeout is None else timeout
        start = time.monotonic()
        try:
            status_code = await self._fetch(url, timeout)
        except ProbeError as e:
            logger.debug(f"[Probe] {e}")
            return ProbeResult(
                url=url,
                healthy=False,
                status_code=e.status_code,
                latency_ms=(time.monotonic() - start) * 1000,
                error=e.reason,
            )
        return ProbeResult(
            url=url,
            healthy=True,
            status_code=status_code,
            latency_ms=(time.monotonic() - start) * 1000,
        )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


# ============================================================================
# READINESS WAITER
# ============================================================================

async def wait_until_ready(
    prober: HealthProber,
    url: str,
    timeout: float,
    interval: float = 2.0,
    service: Optional[str] = None,
) -> float:
    """
    Poll ``url`` until it answers healthy or ``timeout`` seconds elapse.

    Each attempt keeps its own per-probe timeout (clamped to the remaining
    budget), so one hung probe cannot consume the whole budget unretried.

    Returns:
        Seconds elapsed until the service became ready

    Raises:
        ReadinessTimeout: budget exhausted without a healthy probe
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    deadline = started + timeout
    attempt = 0

    while True:
        attempt += 1
        remaining = deadline - loop.time()
        if remaining <= 0:
            break

        result = await prober.probe(url, timeout=min(prober.timeout, remaining))
        if result.healthy:
            elapsed = loop.time() - started
            logger.info(
                f"[Readiness] {service or url} ready after {elapsed:.1f}s "
                f"(attempt {attempt})"
            )
            return elapsed

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        logger.debug(
            f"[Readiness] {service or url} not ready (attempt {attempt}: {result.error}), "
            f"retrying in {min(interval, remaining):.1f}s..."
        )
        await asyncio.sleep(min(interval, remaining))

    logger.warning(f"[Readiness] {service or url} not ready after {timeout:.1f}s")
    raise ReadinessTimeout(url, timeout, service=service)


# ============================================================================
# HEALTH CHECK LOOP
# ============================================================================

class HealthMonitor:
    """
    Re-probes every supervised service on a fixed interval.

    Success maps to ``connected`` and any failure to ``disconnected``. A
    broadcast is published only when the recorded status actually changes.
    """

    def __init__(
        self,
        table: ServiceTable,
        prober: HealthProber,
        publish: PublishFn,
        interval: float = 10.0,
        is_busy: Optional[Callable[[str], bool]] = None,
        skip: Optional[Callable[[str], bool]] = None,
    ):
        self.table = table
        self.prober = prober
        self.interval = interval
        self._publish = publish
        self._is_busy = is_busy or (lambda name: False)
        self._skip = skip or (lambda name: False)
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.last_tick: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_all(self) -> Dict[str, ServiceStatus]:
        """
        Run one tick. Probes run concurrently so a slow service only costs its
        own probe timeout.

        Returns:
            Mapping of service name to the status observed this tick
        """
        targets = []
        for name in self.table.names():
            record = self.table.get(name)
            if self._skip(name) or not record.health_url:
                continue
            if self._is_busy(name):
                logger.debug(f"[HealthMonitor] Skipping '{name}': operation in flight")
                continue
            targets.append((name, record.health_url))

        results = await asyncio.gather(
            *(self.prober.probe(url) for _, url in targets)
        )

        observed: Dict[str, ServiceStatus] = {}
        for (name, _), result in zip(targets, results):
            # Supervisor may have taken the service while we were probing
            if self._is_busy(name):
                continue
            status = ServiceStatus.CONNECTED if result.healthy else ServiceStatus.DISCONNECTED
            observed[name] = status
            if self.table.set_status(name, status, error=result.error):
                logger.info(f"[HealthMonitor] '{name}' is now {status.value}")
                await self._publish(name)

        self.ticks += 1
        self.last_tick = time.time()
        return observed

    async def _run(self) -> None:
        logger.info(f"[HealthMonitor] Started (interval {self.interval:.1f}s)")
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.check_all()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[HealthMonitor] Tick failed: {e}", exc_info=True)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[HealthMonitor] Stopped")
