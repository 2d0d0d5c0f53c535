"""Route modules public API."""

from drivebridge.api.routes.connections import router as connections_router
from drivebridge.api.routes.health import router as health_router
from drivebridge.api.routes.transfers import router as transfers_router

__all__ = ["connections_router", "health_router", "transfers_router"]
