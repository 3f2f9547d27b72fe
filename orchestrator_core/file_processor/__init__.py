"""
File processing microservice supervised by the orchestrator.
"""

from orchestrator_core.file_processor.app import (
    ALLOWED_EXTENSIONS,
    classify,
    create_app,
    main,
)

__all__ = ["ALLOWED_EXTENSIONS", "classify", "create_app", "main"]
