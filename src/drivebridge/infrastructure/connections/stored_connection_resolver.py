"""Resolve provider handles from stored user connections."""

from __future__ import annotations

from drivebridge.domain.errors import ConnectionExpiredError, ConnectionNotFoundError
from drivebridge.domain.ports import ConnectionRepository, ConnectionResolver, ProviderHandle
from drivebridge.infrastructure.providers.registry import ProviderRegistry


class StoredConnectionResolver(ConnectionResolver):
    """Look up `(user_id, service_id)` and build a credentialed handle."""

    def __init__(
        self,
        connection_repository: ConnectionRepository,
        provider_registry: ProviderRegistry,
    ) -> None:
        self._connection_repository = connection_repository
        self._provider_registry = provider_registry

    async def resolve(self, user_id: str, service_id: str) -> ProviderHandle:
        connection = await self._connection_repository.get_connection(user_id, service_id)
        if connection is None:
            raise ConnectionNotFoundError(
                f"No connection found for service '{service_id}' of user '{user_id}'."
            )
        if connection.is_expired():
            raise ConnectionExpiredError(
                f"Connection for service '{service_id}' of user '{user_id}' has expired."
            )
        return self._provider_registry.create(connection)


__all__ = ["StoredConnectionResolver"]
