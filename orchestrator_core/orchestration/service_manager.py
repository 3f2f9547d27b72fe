"""
Service Manager
===============

Facade used by the control API. Brings together:

1. **Descriptor table** - static per-service configuration
2. **Service table** - the owned runtime state
3. **Process supervisor** - start/stop with per-service locking
4. **Health monitor** - recurring probes with change-only broadcasts
5. **Status broadcaster** - fan-out to realtime clients

Every status mutation is followed by a ``services:update`` broadcast. Domain
errors are converted to ``OperationResult`` so no single service failure can
take down the orchestrator or the API.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from orchestrator_core.api.broadcast import StatusBroadcaster
from orchestrator_core.config.services import DescriptorTable, load_descriptors
from orchestrator_core.config.settings import OrchestratorConfig
from orchestrator_core.core.errors import OrchestratorError, UnknownService
from orchestrator_core.orchestration.health import HealthMonitor, HealthProber
from orchestrator_core.orchestration.supervisor import ProcessSupervisor, SpawnFn
from orchestrator_core.orchestration.state import ServiceTable

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of a start/stop request."""
    success: bool
    service: str
    message: str = ""
    error: Optional[str] = None
    kind: Optional[str] = None
    announced: bool = False  # error already broadcast as services:error

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "message": self.message}
        return {"success": False, "error": self.error, "kind": self.kind}


class ServiceManager:
    """Owns the orchestrator's services and exposes the control operations."""

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        descriptors: Optional[DescriptorTable] = None,
        broadcaster: Optional[StatusBroadcaster] = None,
        prober: Optional[HealthProber] = None,
        spawn: Optional[SpawnFn] = None,
    ):
        self.config = config or OrchestratorConfig()
        self.descriptors = descriptors or load_descriptors(
            self.config.services_file, main_port=self.config.port
        )
        self.broadcaster = broadcaster or StatusBroadcaster()
        self.prober = prober or HealthProber(timeout=self.config.probe_timeout)

        self.table = ServiceTable(self.descriptors)
        self.supervisor = ProcessSupervisor(
            self.descriptors,
            self.table,
            self.prober,
            publish=self.publish,
            config=self.config,
            spawn=spawn,
        )
        self.monitor = HealthMonitor(
            self.table,
            self.prober,
            publish=self.publish,
            interval=self.config.health_check_interval,
            is_busy=self.supervisor.is_busy,
            skip=lambda name: self.descriptors.lookup(name).self_managed,
        )
        self._autostart_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """Full public status table (never includes process handles)."""
        return self.table.snapshot()

    async def publish(self, name: str) -> None:
        """Broadcast the current public view of ``name``."""
        await self.broadcaster.broadcast_update(name, self.table.public_view(name))

    async def request_start(self, name: str) -> OperationResult:
        try:
            await self.supervisor.start(name)
        except OrchestratorError as e:
            return await self._failure(name, e)
        return OperationResult(True, name, message=f"{name} started")

    async def request_stop(self, name: str) -> OperationResult:
        try:
            await self.supervisor.stop(name)
        except OrchestratorError as e:
            return await self._failure(name, e)
        return OperationResult(True, name, message=f"{name} stopped")

    async def _failure(self, name: str, error: OrchestratorError) -> OperationResult:
        logger.warning(f"[ServiceManager] {error.kind} for '{name}': {error}")
        result = OperationResult(False, str(name), error=str(error), kind=error.kind)
        # Unknown names never touch the table, so nothing is announced
        if not isinstance(error, UnknownService):
            await self.broadcaster.broadcast_error(str(name), str(error), error.kind)
            result.announced = True
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def autostart(self, sequence: Optional[List[str]] = None) -> Dict[str, bool]:
        """Start services in order, continuing past failures."""
        sequence = self.config.autostart_sequence if sequence is None else sequence
        logger.info("[ServiceManager] 🔄 Auto-starting essential services...")

        outcome: Dict[str, bool] = {}
        for name in sequence:
            logger.info(f"[ServiceManager] Starting {name}...")
            result = await self.request_start(name)
            outcome[name] = result.success
            if result.success:
                logger.info(f"[ServiceManager] ✅ {name} started successfully")
            else:
                logger.info(f"[ServiceManager] ❌ Failed to start {name}: {result.error}")
        return outcome

    async def startup(self) -> None:
        logger.info(
            f"[ServiceManager] Managing {len(self.descriptors)} services: "
            f"{', '.join(self.descriptors.names())}"
        )
        self.monitor.start()
        if self.config.autostart:
            self._autostart_task = asyncio.create_task(self.autostart())

    async def shutdown(self) -> None:
        logger.info("[ServiceManager] Shutting down...")
        if self._autostart_task is not None and not self._autostart_task.done():
            self._autostart_task.cancel()
            try:
                await self._autostart_task
            except asyncio.CancelledError:
                pass
        await self.monitor.stop()
        await self.supervisor.shutdown()
        await self.prober.close()
        logger.info("[ServiceManager] Stopped")
