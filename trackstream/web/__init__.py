"""
HTTP Layer.

This package exposes the streaming engine and catalog queries over FastAPI.
"""

from .app import create_app
from .services import StreamServices, build_services

__all__ = ["StreamServices", "build_services", "create_app"]
