"""Infrastructure layer public API."""

from drivebridge.infrastructure.connections import StoredConnectionResolver
from drivebridge.infrastructure.events import (
    MqttTransferEventPublisher,
    NoopTransferEventPublisher,
)
from drivebridge.infrastructure.providers import (
    GoogleDriveHandle,
    OneDriveHandle,
    ProviderRegistry,
    build_default_provider_registry,
)
from drivebridge.infrastructure.repositories import (
    InMemoryTransferJobRepository,
    PostgresTransferJobRepository,
)
from drivebridge.infrastructure.wallet import FreeWalletLedger, HttpWalletLedger

__all__ = [
    "FreeWalletLedger",
    "GoogleDriveHandle",
    "HttpWalletLedger",
    "InMemoryTransferJobRepository",
    "MqttTransferEventPublisher",
    "NoopTransferEventPublisher",
    "OneDriveHandle",
    "PostgresTransferJobRepository",
    "ProviderRegistry",
    "StoredConnectionResolver",
    "build_default_provider_registry",
]
