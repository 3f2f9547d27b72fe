"""
Orchestrator Error Taxonomy
===========================

Domain exceptions raised by the supervisor and health layers:

- ``UnknownService``   - name not in the descriptor table (validation, never retried)
- ``LaunchFailed``     - every launch candidate failed to spawn (permanent per request)
- ``ReadinessTimeout`` - spawned but never became healthy (process is kept alive)
- ``ProcessExited``    - spawned but exited non-zero before becoming healthy
- ``ProbeError``       - one failed health probe (transient, absorbed into status)

Structural errors travel to the immediate caller; transient ones never leave
the health layer.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Tuple


class ErrorCategory(Enum):
    """Error categories for routing."""
    TRANSIENT = "transient"      # Absorbed into status, recovered next tick
    PERMANENT = "permanent"      # Needs user action (e.g. install the tool)
    VALIDATION = "validation"    # Bad input from the caller
    TIMEOUT = "timeout"          # Budget exceeded, outcome unknown


class OrchestratorError(Exception):
    """Base class for every error surfaced by the orchestrator."""

    category: ErrorCategory = ErrorCategory.PERMANENT

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service

    @property
    def kind(self) -> str:
        """Stable error identifier used at the API boundary."""
        return type(self).__name__

    @property
    def is_retryable(self) -> bool:
        return self.category == ErrorCategory.TRANSIENT


class UnknownService(OrchestratorError):
    """Raised when a caller references a service that is not configured."""

    category = ErrorCategory.VALIDATION

    def __init__(self, service: str):
        super().__init__(f"Service {service} not found", service=service)


class LaunchFailed(OrchestratorError):
    """Raised when none of a service's launch commands could be spawned."""

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        service: str,
        attempts: Optional[List[Tuple[str, str]]] = None,
        display_name: Optional[str] = None,
    ):
        self.attempts = attempts or []
        label = display_name or service
        if self.attempts:
            message = (
                f"Could not start {label}. Please ensure it is installed. "
                f"Tried {len(self.attempts)} command(s)"
            )
        else:
            message = f"Could not start {label}: no launch command available on this platform"
        super().__init__(message, service=service)


class ReadinessTimeout(OrchestratorError):
    """Raised when a service does not become healthy within its budget."""

    category = ErrorCategory.TIMEOUT

    def __init__(self, url: str, timeout: float, service: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        super().__init__(
            f"Service at {url} did not start within {timeout:.1f}s",
            service=service,
        )


class ProcessExited(OrchestratorError):
    """Raised when a spawned service exits with an error before becoming ready."""

    category = ErrorCategory.PERMANENT

    def __init__(self, service: str, returncode: int):
        self.returncode = returncode
        super().__init__(
            f"{service} exited with code {returncode} before becoming ready",
            service=service,
        )


class ProbeError(OrchestratorError):
    """A single health probe failed (timeout, refused, non-2xx)."""

    category = ErrorCategory.TRANSIENT

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Probe of {url} failed: {reason}")


__all__ = [
    "ErrorCategory",
    "OrchestratorError",
    "UnknownService",
    "LaunchFailed",
    "ReadinessTimeout",
    "ProcessExited",
    "ProbeError",
]
