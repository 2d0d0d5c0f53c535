"""Dependency providers for FastAPI routes."""

from functools import lru_cache

from drivebridge.application.services import TransferQueueService
from drivebridge.bootstrap import TransferRuntime, build_transfer_runtime
from drivebridge.config import Settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return singleton settings."""

    return Settings()


@lru_cache(maxsize=1)
def get_transfer_runtime() -> TransferRuntime:
    """Return singleton service graph."""

    return build_transfer_runtime(get_settings())


def get_transfer_queue_service() -> TransferQueueService:
    return get_transfer_runtime().queue_service


__all__ = ["get_settings", "get_transfer_queue_service", "get_transfer_runtime"]
