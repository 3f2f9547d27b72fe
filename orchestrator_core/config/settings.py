"""
Runtime settings for the orchestrator and the file processor.

Provides type-safe configuration objects with sensible defaults that are
overridden by environment variables at construction time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class OrchestratorConfig:
    """Orchestrator server and supervision configuration."""

    host: str = "0.0.0.0"
    port: int = 3001
    health_check_interval: float = 10.0
    probe_timeout: float = 5.0
    readiness_poll_interval: float = 2.0
    spawn_grace_period: float = 0.5
    stop_timeout: float = 10.0
    autostart: bool = True
    autostart_sequence: List[str] = field(
        default_factory=lambda: ["fileProcessor", "lmStudio", "comfyUI"]
    )
    services_file: Optional[Path] = None
    file_processor_url: str = "http://localhost:3002"
    debug: bool = False

    def __post_init__(self):
        """Load from environment variables."""
        self.host = os.getenv("ORCHESTRATOR_HOST", self.host)
        self.port = int(os.getenv("ORCHESTRATOR_PORT", str(self.port)))
        self.health_check_interval = float(
            os.getenv("ORCHESTRATOR_HEALTH_INTERVAL", str(self.health_check_interval))
        )
        self.probe_timeout = float(
            os.getenv("ORCHESTRATOR_PROBE_TIMEOUT", str(self.probe_timeout))
        )
        self.readiness_poll_interval = float(
            os.getenv("ORCHESTRATOR_READINESS_INTERVAL", str(self.readiness_poll_interval))
        )
        self.spawn_grace_period = float(
            os.getenv("ORCHESTRATOR_SPAWN_GRACE", str(self.spawn_grace_period))
        )
        self.stop_timeout = float(
            os.getenv("ORCHESTRATOR_STOP_TIMEOUT", str(self.stop_timeout))
        )
        self.autostart = _env_bool("ORCHESTRATOR_AUTOSTART", self.autostart)

        sequence = os.getenv("ORCHESTRATOR_AUTOSTART_SEQUENCE")
        if sequence is not None:
            self.autostart_sequence = [s.strip() for s in sequence.split(",") if s.strip()]

        services_file = os.getenv("ORCHESTRATOR_SERVICES_FILE")
        if services_file:
            self.services_file = Path(services_file)

        self.file_processor_url = os.getenv(
            "FILE_PROCESSOR_URL", self.file_processor_url
        ).rstrip("/")
        self.debug = _env_bool("ORCHESTRATOR_DEBUG", self.debug)


@dataclass
class FileProcessorConfig:
    """File processing service configuration."""

    host: str = "0.0.0.0"
    port: int = 3002
    upload_dir: Path = field(default_factory=lambda: Path("uploads"))
    max_file_size: int = 100 * 1024 * 1024
    max_files: int = 10

    def __post_init__(self):
        """Load from environment variables."""
        self.host = os.getenv("FILE_PROCESSOR_HOST", self.host)
        self.port = int(os.getenv("FILE_PROCESSOR_PORT", str(self.port)))
        self.upload_dir = Path(
            os.getenv("FILE_PROCESSOR_UPLOAD_DIR", str(self.upload_dir))
        ).expanduser()
        self.max_file_size = int(
            os.getenv("FILE_PROCESSOR_MAX_FILE_SIZE", str(self.max_file_size))
        )
        self.max_files = int(os.getenv("FILE_PROCESSOR_MAX_FILES", str(self.max_files)))
