"""Repository implementations."""

from drivebridge.infrastructure.repositories.in_memory_transfer_job_repository import (
    InMemoryTransferJobRepository,
)
from drivebridge.infrastructure.repositories.postgres_transfer_job_repository import (
    PostgresTransferJobRepository,
)

__all__ = ["InMemoryTransferJobRepository", "PostgresTransferJobRepository"]
