"""
Orchestrator Core - Core Module
===============================

Error taxonomy shared by the supervisor, health loop and control API.
"""

from __future__ import annotations

from orchestrator_core.core.errors import (
    ErrorCategory,
    OrchestratorError,
    UnknownService,
    LaunchFailed,
    ReadinessTimeout,
    ProcessExited,
    ProbeError,
)

__all__ = [
    "ErrorCategory",
    "OrchestratorError",
    "UnknownService",
    "LaunchFailed",
    "ReadinessTimeout",
    "ProcessExited",
    "ProbeError",
]
