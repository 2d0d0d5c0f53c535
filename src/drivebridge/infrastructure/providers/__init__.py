"""Cloud storage provider handles."""

from drivebridge.infrastructure.providers.google_drive import GoogleDriveHandle
from drivebridge.infrastructure.providers.onedrive import OneDriveHandle, clean_onedrive_name
from drivebridge.infrastructure.providers.registry import (
    ProviderRegistry,
    build_default_provider_registry,
    normalize_provider,
)

__all__ = [
    "GoogleDriveHandle",
    "OneDriveHandle",
    "ProviderRegistry",
    "build_default_provider_registry",
    "clean_onedrive_name",
    "normalize_provider",
]
