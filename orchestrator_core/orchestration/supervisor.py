"""
Process Supervisor.

Owns the mapping from service name to live OS process and performs start/stop
safely:

- Per-service lock: start/stop for the same name are serialized, so two
  concurrent starts cannot both spawn; different services run concurrently
- Idempotent start: a service whose health probe already succeeds is adopted
  as connected without spawning (e.g. a user-launched LM Studio)
- Ordered launch candidates: the first command that spawns wins
- No orphaned handles: a live handle is terminated before being replaced
- Exit watching: a child that exits on its own has its handle cleared
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from orchestrator_core.config.services import DescriptorTable, LaunchCommand
from orchestrator_core.config.settings import OrchestratorConfig
from orchestrator_core.core.errors import LaunchFailed, ProcessExited, ReadinessTimeout
from orchestrator_core.orchestration.health import HealthProber, wait_until_ready
from orchestrator_core.orchestration.process import ManagedProcess, SpawnError
from orchestrator_core.orchestration.state import ServiceStatus, ServiceTable

logger = logging.getLogger(__name__)

PublishFn = Callable[[str], Awaitable[None]]
SpawnFn = Callable[[str, LaunchCommand, float], Awaitable[ManagedProcess]]


class ProcessSupervisor:
    """Starts and stops managed services and tracks their process handles."""

    def __init__(
        self,
        descriptors: DescriptorTable,
        table: ServiceTable,
        prober: HealthProber,
        publish: PublishFn,
        config: Optional[OrchestratorConfig] = None,
        spawn: Optional[SpawnFn] = None,
    ):
        self.descriptors = descriptors
        self.table = table
        self.prober = prober
        self.config = config or OrchestratorConfig()
        self._publish = publish
        self._spawn = spawn or ManagedProcess.spawn
        self._locks: Dict[str, asyncio.Lock] = {}
        self._watchers: Set[asyncio.Task] = set()

    def _lock_for(self, name: str) -> asyncio.Lock:
        if name not in self._locks:
            self._locks[name] = asyncio.Lock()
        return self._locks[name]

    def is_busy(self, name: str) -> bool:
        """True while a start/stop for ``name`` is running or queued."""
        lock = self._locks.get(name)
        return lock is not None and lock.locked()

    async def _set(self, name: str, status: ServiceStatus, error: Optional[str] = None) -> None:
        self.table.set_status(name, status, error=error)
        await self._publish(name)

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    async def start(self, name: str) -> None:
        """
        Start a service and wait for it to become ready.

        Raises:
            UnknownService: name not configured
            LaunchFailed: no launch candidate could be spawned
            ReadinessTimeout: spawned but not healthy in time (handle is kept)
            ProcessExited: exited non-zero before becoming healthy
        """
        descriptor = self.descriptors.lookup(name)
        if descriptor.self_managed:
            logger.info(f"[Supervisor] '{name}' is self-managed, nothing to start")
            return

        async with self._lock_for(name):
            if descriptor.health_url:
                result = await self.prober.probe(descriptor.health_url)
                if result.healthy:
                    logger.info(f"[Supervisor] '{name}' already running, adopting it")
                    await self._set(name, ServiceStatus.CONNECTED)
                    return

            existing = self.table.process_of(name)
            if existing is not None:
                logger.warning(
                    f"[Supervisor] '{name}' has an unhealthy process (PID {existing.pid}), "
                    f"replacing it"
                )
                self.table.detach_process(name, expected=existing)
                await existing.terminate(timeout=self.config.stop_timeout)

            process = await self._launch(name, descriptor.display_name)

            self.table.attach_process(name, process)
            await self._set(name, ServiceStatus.STARTING)
            self._watch(name, process)

            if not descriptor.health_url:
                await self._set(name, ServiceStatus.CONNECTED)
                return

            try:
                await self._wait_ready(
                    name, descriptor.health_url, descriptor.readiness_timeout, process
                )
            except ReadinessTimeout as e:
                # Process may still be warming up; keep the handle
                await self._set(name, ServiceStatus.ERROR, error=str(e))
                raise
            except ProcessExited as e:
                # The exit watcher may already have recorded this exit
                if self.table.detach_process(name, expected=process) is not None:
                    await self._set(name, ServiceStatus.ERROR, error=str(e))
                raise

            await self._set(name, ServiceStatus.CONNECTED)
            logger.info(f"[Supervisor] ✅ '{name}' started successfully")

    async def _wait_ready(
        self,
        name: str,
        health_url: str,
        timeout: float,
        process: ManagedProcess,
    ) -> None:
        """
        Wait for readiness, failing fast if the process exits non-zero first.

        A clean exit does not end the wait: launchers hand off to another
        process and exit 0.
        """
        ready = asyncio.create_task(
            wait_until_ready(
                self.prober,
                health_url,
                timeout=timeout,
                interval=self.config.readiness_poll_interval,
                service=name,
            )
        )
        exited = asyncio.create_task(process.wait())
        try:
            await asyncio.wait({ready, exited}, return_when=asyncio.FIRST_COMPLETED)
            if not ready.done() and exited.result() != 0:
                logger.warning(
                    f"[Supervisor] '{name}' exited with code {exited.result()} while starting"
                )
                raise ProcessExited(name, exited.result())
            await ready
        finally:
            for task in (ready, exited):
                task.cancel()
            await asyncio.gather(ready, exited, return_exceptions=True)

    async def _launch(self, name: str, display_name: str) -> ManagedProcess:
        candidates = self.descriptors.candidates(name)
        attempts: List[Tuple[str, str]] = []

        for command in candidates:
            try:
                return await self._spawn(name, command, self.config.spawn_grace_period)
            except SpawnError as e:
                logger.debug(f"[Supervisor] '{name}' candidate failed: {command.describe()}: {e}")
                attempts.append((command.describe(), str(e)))

        logger.error(
            f"[Supervisor] ❌ Could not launch '{name}' "
            f"({len(attempts)} candidate(s) tried)"
        )
        raise LaunchFailed(name, attempts, display_name=display_name)

    # ------------------------------------------------------------------
    # stop
    # ------------------------------------------------------------------

    async def stop(self, name: str) -> bool:
        """
        Stop a service. Stopping a service without a live handle is a no-op.

        Returns:
            True if a process was terminated

        Raises:
            UnknownService: name not configured
        """
        descriptor = self.descriptors.lookup(name)
        if descriptor.self_managed:
            logger.info(f"[Supervisor] '{name}' is self-managed, refusing to stop it")
            return False

        async with self._lock_for(name):
            process = self.table.process_of(name)
            if process is None:
                logger.info(f"[Supervisor] '{name}' has no managed process, nothing to stop")
                return False

            self.table.detach_process(name, expected=process)
            stopped = await process.terminate(timeout=self.config.stop_timeout)
            if not stopped:
                logger.warning(
                    f"[Supervisor] '{name}' (PID {process.pid}) may still be running; "
                    f"no longer tracked"
                )
            await self._set(name, ServiceStatus.STOPPED)
            logger.info(f"[Supervisor] '{name}' stopped")
            return True

    # ------------------------------------------------------------------
    # exit watching / shutdown
    # ------------------------------------------------------------------

    def _watch(self, name: str, process: ManagedProcess) -> None:
        task = asyncio.create_task(self._watch_exit(name, process))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)

    async def _watch_exit(self, name: str, process: ManagedProcess) -> None:
        code = await process.wait()
        if self.table.detach_process(name, expected=process) is None:
            return  # stopped or replaced on purpose

        if code == 0:
            # Launchers that hand off to a GUI exit cleanly; health loop decides
            logger.info(f"[Supervisor] '{name}' launcher (PID {process.pid}) exited cleanly")
            return

        logger.warning(f"[Supervisor] '{name}' (PID {process.pid}) exited with code {code}")
        await self._set(name, ServiceStatus.ERROR, error=f"Process exited with code {code}")

    async def shutdown(self) -> None:
        """Terminate every live process handle."""
        logger.info("[Supervisor] Shutting down all managed processes...")
        handles = []
        for name in self.table.names():
            process = self.table.detach_process(name)
            if process is not None:
                handles.append(process)

        if handles:
            await asyncio.gather(
                *(p.terminate(timeout=self.config.stop_timeout) for p in handles),
                return_exceptions=True,
            )

        for task in list(self._watchers):
            task.cancel()
        if self._watchers:
            await asyncio.gather(*self._watchers, return_exceptions=True)

        logger.info(f"[Supervisor] All processes stopped ({len(handles)} terminated)")
