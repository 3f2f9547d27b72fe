"""Shared fakes for orchestrator tests."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Callable, Dict, List, Optional, Set, Union

import pytest

from orchestrator_core.api.broadcast import StatusBroadcaster
from orchestrator_core.config.services import (
    DescriptorTable,
    LaunchCommand,
    ServiceDescriptor,
    MAIN_SERVER,
)
from orchestrator_core.config.settings import OrchestratorConfig
from orchestrator_core.orchestration.health import ProbeResult
from orchestrator_core.orchestration.process import SpawnError
from orchestrator_core.orchestration.service_manager import ServiceManager

LM_URL = "http://lm.test/v1/models"
COMFY_URL = "http://comfy.test/system_stats"
FILES_URL = "http://files.test/health"

_pids = itertools.count(4000)


class FakeProber:
    """Health prober whose answers are set per URL by the test."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self.healthy: Dict[str, Union[bool, Callable[[], bool]]] = {}
        self.calls: List[str] = []
        self.closed = False

    def set(self, url: str, healthy: Union[bool, Callable[[], bool]]) -> None:
        self.healthy[url] = healthy

    async def probe(self, url: str, timeout: Optional[float] = None) -> ProbeResult:
        self.calls.append(url)
        value = self.healthy.get(url, False)
        if callable(value):
            value = value()
        return ProbeResult(
            url=url,
            healthy=bool(value),
            status_code=200 if value else None,
            error=None if value else "connection refused",
        )

    async def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Stands in for ManagedProcess without touching the OS."""

    def __init__(self, service: str, argv: List[str]):
        self.service = service
        self.argv = argv
        self.pid = next(_pids)
        self.returncode: Optional[int] = None
        self.terminate_calls = 0
        self._exited = asyncio.Event()

    @property
    def is_alive(self) -> bool:
        return self.returncode is None

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    async def terminate(self, timeout: float = 10.0) -> bool:
        self.terminate_calls += 1
        if self.is_alive:
            self.exit(-15)
        return True


class FakeSpawner:
    """Records spawn attempts; argv[0] listed in ``failing`` raise SpawnError."""

    def __init__(self, prober: Optional[FakeProber] = None):
        self.prober = prober
        self.failing: Set[str] = set()
        self.healthy_after_spawn: Dict[str, str] = {}  # service -> url
        self.exit_after_spawn: Dict[str, int] = {}  # service -> exit code
        self.calls: List[str] = []
        self.processes: List[FakeProcess] = []

    async def __call__(self, service: str, command: LaunchCommand, grace_period: float):
        argv = list(command.argv)
        self.calls.append(" ".join(argv))
        if argv[0] in self.failing:
            raise SpawnError(f"{argv[0]}: No such file or directory")
        process = FakeProcess(service, argv)
        self.processes.append(process)
        code = self.exit_after_spawn.get(service)
        if code is not None:
            asyncio.get_running_loop().call_later(0.01, process.exit, code)
        url = self.healthy_after_spawn.get(service)
        if url and self.prober is not None:
            self.prober.set(url, True)
        return process


class FakeClient:
    """Realtime client that records every envelope it is sent."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: List[Dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("client gone")
        self.messages.append(data)

    def events(self, name: str) -> List[Dict[str, Any]]:
        return [m["data"] for m in self.messages if m["event"] == name]


def make_descriptors(readiness_timeout: float = 0.2) -> DescriptorTable:
    return DescriptorTable([
        ServiceDescriptor(name=MAIN_SERVER, display_name="Orchestrator", port=3001, self_managed=True),
        ServiceDescriptor(
            name="lmStudio",
            display_name="LM Studio",
            port=1234,
            health_url=LM_URL,
            readiness_timeout=readiness_timeout,
            launch_commands=(
                LaunchCommand(argv=("lm-studio-missing", "--server")),
                LaunchCommand(argv=("lm-studio", "--server")),
            ),
        ),
        ServiceDescriptor(
            name="comfyUI",
            display_name="ComfyUI",
            port=8188,
            health_url=COMFY_URL,
            readiness_timeout=readiness_timeout,
            launch_commands=(LaunchCommand(argv=("python", "ComfyUI/main.py")),),
        ),
        ServiceDescriptor(
            name="fileProcessor",
            display_name="File Processor",
            port=3002,
            health_url=FILES_URL,
            readiness_timeout=readiness_timeout,
            launch_commands=(LaunchCommand(argv=("file-processor-bin",)),),
        ),
    ])


def make_config(**overrides) -> OrchestratorConfig:
    values = dict(
        health_check_interval=1000.0,
        readiness_poll_interval=0.01,
        spawn_grace_period=0.0,
        stop_timeout=1.0,
        autostart=False,
        file_processor_url="http://127.0.0.1:9",
    )
    values.update(overrides)
    return OrchestratorConfig(**values)


@pytest.fixture
def prober():
    return FakeProber()


@pytest.fixture
def spawner(prober):
    spawner = FakeSpawner(prober)
    spawner.failing.add("lm-studio-missing")
    return spawner


@pytest.fixture
def clients():
    return [FakeClient(), FakeClient(), FakeClient()]


@pytest.fixture
def manager(prober, spawner, clients):
    broadcaster = StatusBroadcaster()
    broadcaster._clients.extend(clients)
    return ServiceManager(
        config=make_config(),
        descriptors=make_descriptors(),
        broadcaster=broadcaster,
        prober=prober,
        spawn=spawner,
    )
