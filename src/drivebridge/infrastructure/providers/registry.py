"""Provider handle registry keyed by provider id."""

from __future__ import annotations

from collections.abc import Callable

import httpx

from drivebridge.domain.entities import CloudConnection
from drivebridge.domain.errors import UnsupportedProviderError
from drivebridge.domain.ports import ProviderHandle
from drivebridge.infrastructure.providers.google_drive import (
    GOOGLE_DRIVE_API_URL,
    GOOGLE_DRIVE_UPLOAD_URL,
    GoogleDriveHandle,
)
from drivebridge.infrastructure.providers.onedrive import (
    MICROSOFT_GRAPH_API_URL,
    OneDriveHandle,
)

ProviderHandleFactory = Callable[[CloudConnection], ProviderHandle]

GOOGLE_PROVIDER = "google"
MICROSOFT_PROVIDER = "microsoft"

_PROVIDER_ALIASES = {
    "google-drive": GOOGLE_PROVIDER,
    "google_drive": GOOGLE_PROVIDER,
    "gdrive": GOOGLE_PROVIDER,
    "onedrive": MICROSOFT_PROVIDER,
    "one-drive": MICROSOFT_PROVIDER,
}


def normalize_provider(provider: str) -> str:
    key = provider.strip().lower()
    return _PROVIDER_ALIASES.get(key, key)


class ProviderRegistry:
    """Create credentialed handles for stored connections."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderHandleFactory] = {}

    def register(self, provider: str, factory: ProviderHandleFactory) -> None:
        """Register or replace the factory for one provider id."""

        self._factories[normalize_provider(provider)] = factory

    def supports(self, provider: str) -> bool:
        return normalize_provider(provider) in self._factories

    @property
    def providers(self) -> list[str]:
        return sorted(self._factories)

    def create(self, connection: CloudConnection) -> ProviderHandle:
        """Build a handle for `connection`."""

        factory = self._factories.get(normalize_provider(connection.provider))
        if factory is None:
            raise UnsupportedProviderError(
                f"Provider '{connection.provider}' of connection "
                f"'{connection.service_id}' is not supported."
            )
        return factory(connection)


def build_default_provider_registry(
    *,
    timeout_seconds: float = 60.0,
    google_drive_api_url: str = GOOGLE_DRIVE_API_URL,
    google_drive_upload_url: str = GOOGLE_DRIVE_UPLOAD_URL,
    microsoft_graph_api_url: str = MICROSOFT_GRAPH_API_URL,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderRegistry:
    """Registry with the Google Drive and OneDrive handles."""

    registry = ProviderRegistry()
    registry.register(
        GOOGLE_PROVIDER,
        lambda connection: GoogleDriveHandle(
            access_token=connection.access_token,
            api_url=google_drive_api_url,
            upload_url=google_drive_upload_url,
            timeout_seconds=timeout_seconds,
            transport=transport,
        ),
    )
    registry.register(
        MICROSOFT_PROVIDER,
        lambda connection: OneDriveHandle(
            access_token=connection.access_token,
            api_url=microsoft_graph_api_url,
            timeout_seconds=timeout_seconds,
            transport=transport,
        ),
    )
    return registry


__all__ = [
    "GOOGLE_PROVIDER",
    "MICROSOFT_PROVIDER",
    "ProviderHandleFactory",
    "ProviderRegistry",
    "build_default_provider_registry",
    "normalize_provider",
]
