"""Top-level API router composition."""

from fastapi import APIRouter

from drivebridge.api.routes import connections_router, health_router, transfers_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(transfers_router)
api_router.include_router(connections_router)

__all__ = ["api_router"]
