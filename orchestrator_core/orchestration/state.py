"""
Service state table.

The ``ServiceTable`` is the only shared mutable state in the orchestrator. It
is written by the process supervisor (start/stop/exit) and the health monitor
(probe results) through the accessor methods below; everything else reads
snapshots of public views.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from orchestrator_core.config.services import DescriptorTable
from orchestrator_core.core.errors import UnknownService

if TYPE_CHECKING:
    from orchestrator_core.orchestration.process import ManagedProcess

logger = logging.getLogger(__name__)


class ServiceStatus(str, Enum):
    """Lifecycle status of a managed service."""
    RUNNING = "running"
    STARTING = "starting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class ServiceRecord:
    """Runtime record of one service. ``name`` never changes."""
    name: str
    port: int
    health_url: Optional[str] = None
    status: ServiceStatus = ServiceStatus.DISCONNECTED
    process: Optional["ManagedProcess"] = None
    last_error: Optional[str] = None
    updated_at: float = field(default_factory=time.time)

    def public_view(self) -> Dict[str, Any]:
        """Boundary view: status, port and url only, never the process handle."""
        view: Dict[str, Any] = {"status": self.status.value, "port": self.port}
        if self.health_url:
            view["url"] = self.health_url
        return view


class ServiceTable:
    """Owned-state object holding one ``ServiceRecord`` per configured service."""

    def __init__(self, descriptors: DescriptorTable):
        self._records: Dict[str, ServiceRecord] = {}
        for descriptor in descriptors:
            self._records[descriptor.name] = ServiceRecord(
                name=descriptor.name,
                port=descriptor.port,
                health_url=descriptor.health_url,
                status=(
                    ServiceStatus.RUNNING if descriptor.self_managed
                    else ServiceStatus.DISCONNECTED
                ),
            )

    def get(self, name: str) -> ServiceRecord:
        try:
            return self._records[name]
        except (KeyError, TypeError):
            raise UnknownService(str(name)) from None

    def names(self) -> List[str]:
        return list(self._records)

    def status_of(self, name: str) -> ServiceStatus:
        return self.get(name).status

    def set_status(
        self,
        name: str,
        status: ServiceStatus,
        error: Optional[str] = None,
    ) -> bool:
        """Record a new status. Returns True if it differs from the previous one."""
        record = self.get(name)
        status = ServiceStatus(status)
        changed = record.status != status
        if changed:
            logger.debug(f"[State] {name}: {record.status.value} -> {status.value}")
        record.status = status
        record.last_error = error
        record.updated_at = time.time()
        return changed

    def process_of(self, name: str) -> Optional["ManagedProcess"]:
        return self.get(name).process

    def attach_process(self, name: str, process: "ManagedProcess") -> None:
        record = self.get(name)
        if record.process is not None and record.process is not process:
            raise RuntimeError(
                f"Service '{name}' already owns process {record.process.pid}; detach it first"
            )
        record.process = process

    def detach_process(
        self,
        name: str,
        expected: Optional["ManagedProcess"] = None,
    ) -> Optional["ManagedProcess"]:
        """
        Clear the process handle and return it.

        When ``expected`` is given the handle is only cleared if it is still
        that process, so a late exit notification cannot detach a replacement.
        """
        record = self.get(name)
        if expected is not None and record.process is not expected:
            return None
        process, record.process = record.process, None
        return process

    def public_view(self, name: str) -> Dict[str, Any]:
        return self.get(name).public_view()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: record.public_view() for name, record in self._records.items()}
