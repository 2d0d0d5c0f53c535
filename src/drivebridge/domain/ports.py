"""Ports for job storage, provider access, events and billing."""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from typing import Protocol, runtime_checkable

from drivebridge.domain.entities import (
    CloudConnection,
    FileRef,
    SourceFile,
    TransferHistoryEntry,
    TransferJob,
)
from drivebridge.domain.monitoring_models import TransferProgressEvent
from drivebridge.domain.transfer_jobs import TransferJobOrder, TransferJobPatch, TransferJobStatus


class TransferJobRepository(Protocol):
    """Durable store of transfer jobs with per-user secondary views."""

    async def create(self, job: TransferJob) -> None:
        """Insert a new job; raise `DuplicateTransferJobError` if the id exists."""

    async def get(self, job_id: str) -> TransferJob:
        """Return a job or raise `TransferJobNotFoundError`."""

    async def update(
        self,
        job_id: str,
        patch: TransferJobPatch,
        *,
        expected_status: TransferJobStatus | None = None,
        expected_claim_owner: str | None = None,
    ) -> TransferJob:
        """Merge fields into one job and sync its user-scoped copy.

        Raises `TransferJobConflictError` when an expectation does not hold.
        """

    async def query(
        self,
        statuses: Collection[TransferJobStatus],
        *,
        user_id: str | None = None,
        order: TransferJobOrder = TransferJobOrder.DISPATCH,
        limit: int | None = None,
    ) -> list[TransferJob]:
        """Return a point-in-time snapshot of matching jobs."""

    async def claim(
        self,
        job_id: str,
        *,
        claim_owner: str,
        expected_version: int,
        reset_progress: bool = True,
    ) -> TransferJob | None:
        """Compare-and-set `queued -> processing`; `None` when another writer won."""

    async def touch(self, job_id: str, *, claim_owner: str) -> bool:
        """Refresh the heartbeat of a processing job still owned by `claim_owner`."""

    async def requeue_stale(self, *, stale_before: datetime, limit: int) -> list[str]:
        """Recover processing jobs whose heartbeat is older than `stale_before`.

        Each recovery counts as one retry; a job past its bound moves to failed.
        """


@runtime_checkable
class TransferHistoryRepository(Protocol):
    """Append-only record of completed transfers."""

    async def append_history(self, entry: TransferHistoryEntry) -> None:
        """Persist one history entry."""

    async def list_history(self, user_id: str, *, limit: int = 50) -> list[TransferHistoryEntry]:
        """Return newest entries first."""


@runtime_checkable
class ConnectionRepository(Protocol):
    """Stored provider credentials per user."""

    async def save_connection(self, connection: CloudConnection) -> None:
        """Create or replace the connection for `(user_id, service_id)`."""

    async def get_connection(self, user_id: str, service_id: str) -> CloudConnection | None:
        """Return one connection when present."""


class ProviderHandle(Protocol):
    """Credentialed access to one cloud storage provider."""

    async def download(self, file: SourceFile) -> bytes:
        """Return the file content; raise `TransferIOError` on failure."""

    async def upload(self, data: bytes, name: str, path: str) -> FileRef:
        """Store `data` as `name` inside container `path`."""


class ConnectionResolver(Protocol):
    """Maps `(user_id, service_id)` to a provider handle."""

    async def resolve(self, user_id: str, service_id: str) -> ProviderHandle:
        """Return a handle or raise a `TransferConnectionError` subclass."""


class TransferEventPublisher(Protocol):
    """Best-effort broadcast of job progress."""

    async def publish_progress(self, event: TransferProgressEvent) -> None:
        """Publish one progress event."""


class WalletLedger(Protocol):
    """External wallet used to charge for completed transfers."""

    async def debit(self, user_id: str, amount_cents: int, description: str) -> bool:
        """Return `False` on insufficient funds."""


__all__ = [
    "ConnectionRepository",
    "ConnectionResolver",
    "ProviderHandle",
    "TransferEventPublisher",
    "TransferHistoryRepository",
    "TransferJobRepository",
    "WalletLedger",
]
