"""
Orchestration module for the local service orchestrator.

Provides:
- Service state table
- Managed child processes
- Health probing, readiness waiting and the health-check loop
- Process supervisor and the service manager facade
"""

from orchestrator_core.orchestration.state import (
    ServiceStatus,
    ServiceRecord,
    ServiceTable,
)

from orchestrator_core.orchestration.process import (
    ManagedProcess,
    SpawnError,
)

from orchestrator_core.orchestration.health import (
    HealthProber,
    HealthMonitor,
    ProbeResult,
    wait_until_ready,
)

from orchestrator_core.orchestration.supervisor import ProcessSupervisor

from orchestrator_core.orchestration.service_manager import (
    ServiceManager,
    OperationResult,
)

__all__ = [
    # State
    "ServiceStatus",
    "ServiceRecord",
    "ServiceTable",
    # Processes
    "ManagedProcess",
    "SpawnError",
    # Health
    "HealthProber",
    "HealthMonitor",
    "ProbeResult",
    "wait_until_ready",
    # Supervision
    "ProcessSupervisor",
    "ServiceManager",
    "OperationResult",
]
