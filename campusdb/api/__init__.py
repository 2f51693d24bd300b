"""
HTTP API for campusdb.

A FastAPI application exposing the entity services under /api/v1.
Handlers stay thin; every rule lives in the services and the
consistency core.
"""

from .app import create_app, status_for
from .routes import router
from .settings import Settings

__all__ = [
    "create_app",
    "router",
    "Settings",
    "status_for",
]
