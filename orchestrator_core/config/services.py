"""
Service Descriptor Table.

Static, read-only registry built once at startup. Each descriptor names a
service, its port, its health-check URL and an ordered list of launch command
candidates (different install locations / package managers per platform).

The built-in table can be overridden by a YAML file::

    services:
      comfyUI:
        port: 8189
        health_url: http://localhost:8189/system_stats
        readiness_timeout: 60
        launch_commands:
          - argv: [python, main.py, --port, "8189"]
            cwd: ~/ComfyUI
"""

from __future__ import annotations

import logging
import os
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from orchestrator_core.core.errors import UnknownService

logger = logging.getLogger(__name__)

MAIN_SERVER = "mainServer"


@dataclass(frozen=True)
class LaunchCommand:
    """One candidate way of launching a service."""
    argv: Tuple[str, ...]
    cwd: Optional[str] = None
    env: Tuple[Tuple[str, str], ...] = ()
    platforms: Tuple[str, ...] = ()  # empty = any platform

    def applies_to(self, system: Optional[str] = None) -> bool:
        if not self.platforms:
            return True
        return (system or platform.system()) in self.platforms

    def resolved_argv(self) -> List[str]:
        """Expand ``$VAR`` / ``%VAR%`` / ``~`` in every argument."""
        return [os.path.expanduser(os.path.expandvars(arg)) for arg in self.argv]

    def resolved_cwd(self) -> Optional[Path]:
        if not self.cwd:
            return None
        return Path(os.path.expanduser(os.path.expandvars(self.cwd)))

    def describe(self) -> str:
        return " ".join(self.argv)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LaunchCommand":
        argv = data.get("argv")
        if isinstance(argv, str):
            argv = argv.split()
        if not argv:
            raise ValueError("launch command requires a non-empty 'argv'")
        return cls(
            argv=tuple(str(a) for a in argv),
            cwd=data.get("cwd"),
            env=tuple(sorted((str(k), str(v)) for k, v in (data.get("env") or {}).items())),
            platforms=tuple(data.get("platforms") or ()),
        )


@dataclass(frozen=True)
class ServiceDescriptor:
    """Static configuration of one managed service."""
    name: str
    display_name: str
    port: int
    health_url: Optional[str] = None
    launch_commands: Tuple[LaunchCommand, ...] = ()
    readiness_timeout: float = 30.0
    self_managed: bool = False

    def candidates(self, system: Optional[str] = None) -> List[LaunchCommand]:
        """Launch commands valid on the given (or current) platform, in order."""
        return [cmd for cmd in self.launch_commands if cmd.applies_to(system)]

    @classmethod
    def from_dict(
        cls,
        name: str,
        data: Mapping[str, Any],
        base: Optional["ServiceDescriptor"] = None,
    ) -> "ServiceDescriptor":
        """Build a descriptor from YAML data, inheriting unset fields from ``base``."""
        if "launch_commands" in data:
            commands = tuple(
                LaunchCommand.from_dict(cmd) for cmd in (data.get("launch_commands") or [])
            )
        else:
            commands = base.launch_commands if base else ()

        if base is None and "port" not in data:
            raise ValueError(f"service '{name}' requires a 'port'")

        return cls(
            name=name,
            display_name=data.get("display_name", base.display_name if base else name),
            port=int(data.get("port", base.port if base else 0)),
            health_url=data.get("health_url", base.health_url if base else None),
            launch_commands=commands,
            readiness_timeout=float(
                data.get("readiness_timeout", base.readiness_timeout if base else 30.0)
            ),
            self_managed=bool(data.get("self_managed", base.self_managed if base else False)),
        )


class DescriptorTable:
    """Read-only name -> descriptor mapping."""

    def __init__(self, descriptors: List[ServiceDescriptor]):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in self._descriptors:
                raise ValueError(f"duplicate service name '{descriptor.name}'")
            self._descriptors[descriptor.name] = descriptor

    def lookup(self, name: str) -> ServiceDescriptor:
        try:
            return self._descriptors[name]
        except (KeyError, TypeError):
            raise UnknownService(str(name)) from None

    def candidates(self, name: str) -> List[LaunchCommand]:
        return self.lookup(name).candidates()

    def names(self) -> List[str]:
        return list(self._descriptors)

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)


def default_descriptors(main_port: int = 3001) -> DescriptorTable:
    """The built-in services: the orchestrator itself, LM Studio, ComfyUI, file processor."""
    return DescriptorTable([
        ServiceDescriptor(
            name=MAIN_SERVER,
            display_name="Local Server Orchestrator",
            port=main_port,
            self_managed=True,
        ),
        ServiceDescriptor(
            name="lmStudio",
            display_name="LM Studio",
            port=1234,
            health_url="http://localhost:1234/v1/models",
            readiness_timeout=30.0,
            launch_commands=(
                LaunchCommand(
                    argv=(r"C:\Users\%USERNAME%\AppData\Local\LM Studio\LM Studio.exe", "--server"),
                    platforms=("Windows",),
                ),
                LaunchCommand(
                    argv=("/Applications/LM Studio.app/Contents/MacOS/LM Studio", "--server"),
                    platforms=("Darwin",),
                ),
                LaunchCommand(argv=("lm-studio", "--server")),
            ),
        ),
        ServiceDescriptor(
            name="comfyUI",
            display_name="ComfyUI",
            port=8188,
            health_url="http://localhost:8188/system_stats",
            readiness_timeout=45.0,
            launch_commands=(
                LaunchCommand(argv=("python", "ComfyUI/main.py")),
                LaunchCommand(argv=("python3", "ComfyUI/main.py")),
                LaunchCommand(argv=("./ComfyUI/main.py",), platforms=("Linux", "Darwin")),
            ),
        ),
        ServiceDescriptor(
            name="fileProcessor",
            display_name="File Processor",
            port=3002,
            health_url="http://localhost:3002/health",
            readiness_timeout=10.0,
            launch_commands=(
                LaunchCommand(argv=(sys.executable, "-m", "orchestrator_core.file_processor")),
            ),
        ),
    ])


def load_descriptors(path: Optional[Path] = None, main_port: int = 3001) -> DescriptorTable:
    """
    Build the descriptor table, applying an optional YAML override file.

    Entries in the file replace fields of the matching built-in service or add
    new services. ``mainServer`` cannot be overridden.
    """
    defaults = default_descriptors(main_port)
    if path is None:
        return defaults

    import yaml

    path = Path(path).expanduser()
    logger.info(f"[Config] Loading service descriptors from {path}")
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    overrides = data.get("services") or {}
    if not isinstance(overrides, dict):
        raise ValueError(f"{path}: 'services' must be a mapping")

    merged: Dict[str, ServiceDescriptor] = {d.name: d for d in defaults}
    for name, entry in overrides.items():
        if name == MAIN_SERVER:
            logger.warning(f"[Config] Ignoring override for self-managed '{MAIN_SERVER}'")
            continue
        merged[name] = ServiceDescriptor.from_dict(name, entry or {}, base=merged.get(name))

    return DescriptorTable(list(merged.values()))
