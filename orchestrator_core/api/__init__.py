"""
Control API for the local service orchestrator.

The FastAPI application lives in ``orchestrator_core.api.server`` and is not
imported here, so the orchestration layer can use the broadcaster without
pulling in the web stack.
"""

from orchestrator_core.api.broadcast import (
    EVENT_ERROR,
    EVENT_START,
    EVENT_STATUS,
    EVENT_STOP,
    EVENT_UPDATE,
    StatusBroadcaster,
)

__all__ = [
    "EVENT_ERROR",
    "EVENT_START",
    "EVENT_STATUS",
    "EVENT_STOP",
    "EVENT_UPDATE",
    "StatusBroadcaster",
]
