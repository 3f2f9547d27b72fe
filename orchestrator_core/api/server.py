"""
Local Server Orchestrator API

REST + WebSocket control surface for the locally supervised services:
- Service status table and start/stop control
- Realtime status streaming (``services:update`` / ``services:error``)
- Pass-through endpoints for the file processing service

Architecture:
    ┌───────────────────────────────────────────────────────────┐
    │                 Local Server Orchestrator                  │
    ├───────────────────────────────────────────────────────────┤
    │   ┌──────────────┐   ┌──────────────┐   ┌─────────────┐   │
    │   │   REST API   │   │  WebSocket   │   │   Health    │   │
    │   │   /api/...   │   │     /ws      │   │   Monitor   │   │
    │   └──────┬───────┘   └──────┬───────┘   └──────┬──────┘   │
    │          └──────────────────┼──────────────────┘          │
    │                             ▼                             │
    │   ┌───────────────────────────────────────────────────┐   │
    │   │ ServiceManager -> ProcessSupervisor -> children    │   │
    │   │   lmStudio :1234   comfyUI :8188   fileProc :3002  │   │
    │   └───────────────────────────────────────────────────┘   │
    └───────────────────────────────────────────────────────────┘

Usage:
    python -m orchestrator_core.api.server
    # or
    uvicorn orchestrator_core.api.server:create_app --factory --port 3001
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import aiohttp
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from orchestrator_core import __version__
from orchestrator_core.api.broadcast import (
    EVENT_ERROR,
    EVENT_START,
    EVENT_STATUS,
    EVENT_STOP,
)
from orchestrator_core.config.settings import OrchestratorConfig
from orchestrator_core.orchestration.service_manager import OperationResult, ServiceManager

logger = logging.getLogger(__name__)

# localhost, WebContainer and credentialless preview origins
ALLOWED_ORIGIN_REGEX = (
    r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
    r"|^https://[^/]*webcontainer-api\.io$"
    r"|^https://[^/]*local-credentialless[^/]*$"
)


# ============================================================================
# Request / Response Models
# ============================================================================

class HealthResponse(BaseModel):
    status: str
    service: str = "orchestrator"
    version: str
    timestamp: str
    uptime_seconds: float
    connected_clients: int
    health_checks: Dict[str, Any]


class ProcessFilesRequest(BaseModel):
    files: List[Dict[str, Any]] = Field(default_factory=list)


class ConfirmAssetsRequest(BaseModel):
    assets: List[Dict[str, Any]] = Field(default_factory=list)


def _result_response(result: OperationResult) -> JSONResponse:
    return JSONResponse(
        status_code=200 if result.success else 500,
        content=result.to_dict(),
    )


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    manager: Optional[ServiceManager] = None,
    config: Optional[OrchestratorConfig] = None,
) -> FastAPI:
    """
    Build the orchestrator application.

    Args:
        manager: Pre-built service manager (tests inject fakes here)
        config: Orchestrator configuration, used when ``manager`` is None
    """
    if manager is None:
        manager = ServiceManager(config=config)
    config = manager.config
    started_at = time.time()
    request_tasks: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("=" * 60)
        logger.info(f"🚀 Local Server Orchestrator v{__version__} starting on port {config.port}")
        logger.info("=" * 60)
        try:
            await manager.startup()
            logger.info("[✓] Health monitor started")
            logger.info(f"🔧 Service management API at http://localhost:{config.port}/api")
            yield
        finally:
            logger.info("🛑 Shutting down Local Server Orchestrator...")
            for task in list(request_tasks):
                task.cancel()
            if request_tasks:
                await asyncio.gather(*request_tasks, return_exceptions=True)
            await manager.shutdown()
            logger.info("Local Server Orchestrator stopped")

    app = FastAPI(
        title="Local Server Orchestrator",
        description="Supervises local AI services and streams their status",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=ALLOWED_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # ========================================================================
    # Health & Status Endpoints
    # ========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Liveness of the orchestrator itself."""
        monitor = manager.monitor
        return HealthResponse(
            status="healthy",
            version=__version__,
            timestamp=datetime.now(timezone.utc).isoformat(),
            uptime_seconds=round(time.time() - started_at, 1),
            connected_clients=manager.broadcaster.client_count,
            health_checks={
                "running": monitor.running,
                "interval": monitor.interval,
                "ticks": monitor.ticks,
                "last_tick": monitor.last_tick,
            },
        )

    @app.get("/api/services/status", tags=["Services"])
    async def services_status():
        """Full status table keyed by service name."""
        return manager.get_status()

    @app.post("/api/services/{name}/start", tags=["Services"])
    async def start_service(name: str):
        result = await manager.request_start(name)
        return _result_response(result)

    @app.post("/api/services/{name}/stop", tags=["Services"])
    async def stop_service(name: str):
        result = await manager.request_stop(name)
        return _result_response(result)

    # ========================================================================
    # File Processing Pass-through
    # ========================================================================

    @app.post("/api/files/process", tags=["Files"])
    async def process_files(request: ProcessFilesRequest):
        """Acknowledge a batch of files handed over by the panel."""
        return {
            "success": True,
            "processedFiles": len(request.files),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/api/assets/confirm", tags=["Files"])
    async def confirm_assets(request: ConfirmAssetsRequest):
        """Forward asset confirmation to the file processing service."""
        url = f"{config.file_processor_url}/confirm-assets"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=request.model_dump(),
                    timeout=aiohttp.ClientTimeout(total=config.probe_timeout),
                ) as response:
                    payload = await response.json(content_type=None)
                    return JSONResponse(status_code=response.status, content=payload)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"[Files] File processor unavailable at {url}: {e}")
            return JSONResponse(
                status_code=503,
                content={"success": False, "error": "File processor unavailable"},
            )

    # ========================================================================
    # WebSocket Endpoint
    # ========================================================================

    async def _handle_request(websocket: WebSocket, event: str, name: Any) -> None:
        if event == EVENT_START:
            result = await manager.request_start(name)
        else:
            result = await manager.request_stop(name)

        if not result.success and not result.announced:
            await manager.broadcaster.send(
                websocket,
                EVENT_ERROR,
                {"service": result.service, "error": result.error, "kind": result.kind},
            )

    @app.websocket("/ws")
    async def websocket_services(websocket: WebSocket):
        """Realtime channel: status snapshot on connect, then updates and control events."""
        await websocket.accept()
        await manager.broadcaster.connect(websocket)
        await manager.broadcaster.send(websocket, EVENT_STATUS, manager.get_status())

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                    event = message["event"]
                except (ValueError, KeyError, TypeError):
                    logger.warning(f"[WebSocket] Ignoring malformed message: {raw[:200]!r}")
                    continue

                if event == EVENT_STATUS:
                    await manager.broadcaster.send(websocket, EVENT_STATUS, manager.get_status())
                elif event in (EVENT_START, EVENT_STOP):
                    # Starts can take tens of seconds; keep the socket responsive
                    task = asyncio.create_task(
                        _handle_request(websocket, event, message.get("data"))
                    )
                    request_tasks.add(task)
                    task.add_done_callback(request_tasks.discard)
                else:
                    logger.warning(f"[WebSocket] Unknown event '{event}'")

        except WebSocketDisconnect:
            pass
        finally:
            await manager.broadcaster.disconnect(websocket)

    return app


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    """Run the orchestrator server."""
    import uvicorn

    config = OrchestratorConfig()

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    uvicorn.run(
        create_app(config=config),
        host=config.host,
        port=config.port,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
