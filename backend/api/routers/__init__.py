"""API Routers package

This package contains all API route handlers.
Routers are organized by feature domain.
"""

from . import queue_router

__all__ = ["queue_router"]
