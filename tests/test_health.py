"""Tests for health probing, readiness waiting and the health-check loop."""

from __future__ import annotations

import asyncio
import socket
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from orchestrator_core.core.errors import ReadinessTimeout
from orchestrator_core.orchestration.health import (
    HealthMonitor,
    HealthProber,
    ProbeResult,
    wait_until_ready,
)
from orchestrator_core.orchestration.state import ServiceStatus, ServiceTable
from tests.conftest import COMFY_URL, FILES_URL, LM_URL, FakeProber, make_descriptors


# =========================================================================
# Helpers
# =========================================================================

@asynccontextmanager
async def health_server(handler):
    app = web.Application()
    app.router.add_get("/health", handler)
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


def unused_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class Recorder:
    def __init__(self):
        self.published = []

    async def __call__(self, name: str) -> None:
        self.published.append(name)


# =========================================================================
# HealthProber
# =========================================================================

class TestHealthProber:
    """Verify single probes against a real HTTP endpoint."""

    @pytest.mark.asyncio
    async def test_2xx_is_healthy(self):
        async def ok(request):
            return web.json_response({"status": "healthy"})

        prober = HealthProber(timeout=2.0)
        try:
            async with health_server(ok) as server:
                result = await prober.probe(str(server.make_url("/health")))
        finally:
            await prober.close()

        assert result.healthy is True
        assert result.status_code == 200
        assert result.error is None

    @pytest.mark.asyncio
    async def test_non_2xx_is_unhealthy(self):
        async def unavailable(request):
            return web.Response(status=503)

        prober = HealthProber(timeout=2.0)
        try:
            async with health_server(unavailable) as server:
                result = await prober.probe(str(server.make_url("/health")))
        finally:
            await prober.close()

        assert result.healthy is False
        assert result.status_code == 503
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_connection_refused_is_absorbed(self):
        prober = HealthProber(timeout=2.0)
        try:
            result = await prober.probe(f"http://127.0.0.1:{unused_port()}/health")
        finally:
            await prober.close()

        assert result.healthy is False
        assert result.error

    @pytest.mark.asyncio
    async def test_probe_timeout_is_absorbed(self):
        async def slow(request):
            await asyncio.sleep(0.5)
            return web.Response()

        prober = HealthProber(timeout=5.0)
        try:
            async with health_server(slow) as server:
                result = await prober.probe(str(server.make_url("/health")), timeout=0.1)
        finally:
            await prober.close()

        assert result.healthy is False
        assert "timed out" in result.error


# =========================================================================
# Readiness waiter
# =========================================================================

class TestWaitUntilReady:
    """Verify polling until healthy or out of budget."""

    @pytest.mark.asyncio
    async def test_returns_once_service_becomes_healthy(self):
        calls = {"n": 0}

        async def warming_up(request):
            calls["n"] += 1
            return web.Response(status=200 if calls["n"] >= 3 else 503)

        prober = HealthProber(timeout=1.0)
        try:
            async with health_server(warming_up) as server:
                elapsed = await wait_until_ready(
                    prober, str(server.make_url("/health")), timeout=5.0, interval=0.01
                )
        finally:
            await prober.close()

        assert calls["n"] == 3
        assert elapsed < 5.0

    @pytest.mark.asyncio
    async def test_raises_after_budget(self):
        prober = FakeProber()

        with pytest.raises(ReadinessTimeout) as exc_info:
            await wait_until_ready(prober, LM_URL, timeout=0.05, interval=0.01, service="lmStudio")

        assert exc_info.value.service == "lmStudio"
        assert len(prober.calls) >= 2

    @pytest.mark.asyncio
    async def test_hung_probe_cannot_outlive_budget(self):
        """Per-attempt timeout is clamped to the remaining budget."""

        class HangingProber(FakeProber):
            async def probe(self, url, timeout=None):
                self.calls.append(timeout)
                await asyncio.sleep(timeout)
                return ProbeResult(url=url, healthy=False, error="timed out")

        prober = HangingProber(timeout=5.0)
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(ReadinessTimeout):
            await wait_until_ready(prober, LM_URL, timeout=0.1, interval=0.01)

        assert loop.time() - started < 1.0
        assert all(t <= 0.1 for t in prober.calls)


# =========================================================================
# Health check loop
# =========================================================================

class TestHealthMonitor:
    """Verify status convergence and change-only broadcasts."""

    def _monitor(self, prober, busy=()):
        table = ServiceTable(make_descriptors())
        recorder = Recorder()
        monitor = HealthMonitor(
            table,
            prober,
            publish=recorder,
            interval=0.01,
            is_busy=lambda name: name in busy,
            skip=lambda name: name == "mainServer",
        )
        return table, recorder, monitor

    @pytest.mark.asyncio
    async def test_transition_broadcasts_exactly_once(self):
        prober = FakeProber()
        prober.set(COMFY_URL, True)
        table, recorder, monitor = self._monitor(prober)

        await monitor.check_all()
        await monitor.check_all()
        assert table.status_of("comfyUI") == ServiceStatus.CONNECTED
        assert recorder.published.count("comfyUI") == 1

        prober.set(COMFY_URL, False)
        for _ in range(3):
            await monitor.check_all()

        assert table.status_of("comfyUI") == ServiceStatus.DISCONNECTED
        assert recorder.published.count("comfyUI") == 2

    @pytest.mark.asyncio
    async def test_unchanged_disconnected_services_are_silent(self):
        prober = FakeProber()
        table, recorder, monitor = self._monitor(prober)

        observed = await monitor.check_all()

        assert recorder.published == []
        assert set(observed) == {"lmStudio", "comfyUI", "fileProcessor"}
        assert monitor.ticks == 1

    @pytest.mark.asyncio
    async def test_main_server_is_never_probed(self):
        prober = FakeProber()
        table, _, monitor = self._monitor(prober)

        await monitor.check_all()

        assert sorted(prober.calls) == sorted([LM_URL, COMFY_URL, FILES_URL])
        assert table.status_of("mainServer") == ServiceStatus.RUNNING

    @pytest.mark.asyncio
    async def test_stopped_service_found_running_is_corrected(self):
        prober = FakeProber()
        table, recorder, monitor = self._monitor(prober)
        table.set_status("lmStudio", ServiceStatus.STOPPED)
        prober.set(LM_URL, True)

        await monitor.check_all()

        assert table.status_of("lmStudio") == ServiceStatus.CONNECTED
        assert recorder.published == ["lmStudio"]

    @pytest.mark.asyncio
    async def test_busy_services_are_skipped(self):
        prober = FakeProber()
        table, recorder, monitor = self._monitor(prober, busy={"comfyUI"})
        table.set_status("comfyUI", ServiceStatus.STARTING)

        await monitor.check_all()

        assert COMFY_URL not in prober.calls
        assert table.status_of("comfyUI") == ServiceStatus.STARTING

    @pytest.mark.asyncio
    async def test_background_loop_ticks_and_stops(self):
        prober = FakeProber()
        prober.set(FILES_URL, True)
        table, recorder, monitor = self._monitor(prober)

        monitor.start()
        assert monitor.running
        for _ in range(50):
            if monitor.ticks >= 2:
                break
            await asyncio.sleep(0.01)
        await monitor.stop()

        assert monitor.ticks >= 2
        assert not monitor.running
        assert recorder.published == ["fileProcessor"]
