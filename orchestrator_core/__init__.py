"""
Orchestrator Core - Local Service Orchestrator
"""

__version__ = "1.0.0"

from orchestrator_core.orchestration.state import ServiceStatus
from orchestrator_core.orchestration.service_manager import ServiceManager

__all__ = [
    "ServiceManager",
    "ServiceStatus",
    "__version__",
]
