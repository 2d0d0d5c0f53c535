"""HTTP API."""

from drivebridge.api.router import api_router

__all__ = ["api_router"]
