"""
Configuration for Orchestrator Core.

Provides:
- Static service descriptor table (ports, health URLs, launch candidates)
- Environment-driven runtime settings
"""

from orchestrator_core.config.services import (
    MAIN_SERVER,
    LaunchCommand,
    ServiceDescriptor,
    DescriptorTable,
    default_descriptors,
    load_descriptors,
)
from orchestrator_core.config.settings import (
    OrchestratorConfig,
    FileProcessorConfig,
)

__all__ = [
    "MAIN_SERVER",
    "LaunchCommand",
    "ServiceDescriptor",
    "DescriptorTable",
    "default_descriptors",
    "load_descriptors",
    "OrchestratorConfig",
    "FileProcessorConfig",
]
