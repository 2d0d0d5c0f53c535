"""Connection resolver implementations."""

from drivebridge.infrastructure.connections.stored_connection_resolver import (
    StoredConnectionResolver,
)

__all__ = ["StoredConnectionResolver"]
