"""Demo HTTP service for exercising application-performance-monitoring agents."""

from __future__ import annotations

from typing import Any

from .database import (
    ConstraintError,
    Database,
    InitializationError,
    StorageError,
    resolve_database_path,
)


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the demo FastAPI application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "ConstraintError",
    "Database",
    "InitializationError",
    "StorageError",
    "resolve_database_path",
    "create_app",
]
