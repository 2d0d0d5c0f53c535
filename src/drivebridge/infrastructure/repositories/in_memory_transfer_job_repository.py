"""In-memory repository implementation for transfer jobs."""

from __future__ import annotations

import asyncio
from collections.abc import Collection
from datetime import datetime

from drivebridge.domain.entities import (
    CloudConnection,
    TransferHistoryEntry,
    TransferJob,
    utc_now,
)
from drivebridge.domain.errors import (
    DuplicateTransferJobError,
    TransferJobConflictError,
    TransferJobNotFoundError,
)
from drivebridge.domain.job_transitions import stale_requeue_patch
from drivebridge.domain.ports import (
    ConnectionRepository,
    TransferHistoryRepository,
    TransferJobRepository,
)
from drivebridge.domain.transfer_jobs import TransferJobOrder, TransferJobPatch, TransferJobStatus


def _sort_jobs(jobs: list[TransferJob], order: TransferJobOrder) -> None:
    if order is TransferJobOrder.DISPATCH:
        jobs.sort(key=lambda job: (-job.priority, job.created_at, job.job_id))
    elif order is TransferJobOrder.NEWEST_FIRST:
        jobs.sort(key=lambda job: (job.created_at, job.job_id), reverse=True)
    else:
        finished = [job for job in jobs if job.completed_at is not None]
        unfinished = [job for job in jobs if job.completed_at is None]
        finished.sort(key=lambda job: (job.completed_at, job.job_id), reverse=True)
        jobs[:] = finished + unfinished


class InMemoryTransferJobRepository(
    TransferJobRepository,
    TransferHistoryRepository,
    ConnectionRepository,
):
    """Simple repository for local development and tests."""

    def __init__(self) -> None:
        self._jobs: dict[str, TransferJob] = {}
        self._user_jobs: dict[str, dict[str, TransferJob]] = {}
        self._history: dict[str, list[TransferHistoryEntry]] = {}
        self._connections: dict[tuple[str, str], CloudConnection] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: TransferJob) -> None:
        """Insert a new job and its user-scoped copy."""

        async with self._lock:
            if job.job_id in self._jobs:
                raise DuplicateTransferJobError(f"Transfer job '{job.job_id}' already exists.")
            stored = job.copy()
            self._jobs[stored.job_id] = stored
            self._sync_user_copy_unlocked(stored)

    async def get(self, job_id: str) -> TransferJob:
        """Return by job id."""

        async with self._lock:
            return self._get_unlocked(job_id).copy()

    async def update(
        self,
        job_id: str,
        patch: TransferJobPatch,
        *,
        expected_status: TransferJobStatus | None = None,
        expected_claim_owner: str | None = None,
    ) -> TransferJob:
        """Merge fields into one job under the store lock."""

        async with self._lock:
            job = self._get_unlocked(job_id)
            if expected_status is not None and job.status is not expected_status:
                raise TransferJobConflictError(
                    f"Transfer job '{job_id}' is '{job.status}', expected '{expected_status}'."
                )
            if expected_claim_owner is not None and job.claim_owner != expected_claim_owner:
                raise TransferJobConflictError(
                    f"Transfer job '{job_id}' is no longer claimed by '{expected_claim_owner}'."
                )
            if patch.apply_to(job):
                job.version += 1
                job.updated_at = utc_now()
                self._sync_user_copy_unlocked(job)
            return job.copy()

    async def query(
        self,
        statuses: Collection[TransferJobStatus],
        *,
        user_id: str | None = None,
        order: TransferJobOrder = TransferJobOrder.DISPATCH,
        limit: int | None = None,
    ) -> list[TransferJob]:
        """Return matching jobs as detached copies."""

        wanted = frozenset(statuses)
        async with self._lock:
            if user_id is None:
                candidates = self._jobs.values()
            else:
                candidates = self._user_jobs.get(user_id, {}).values()
            matched = [job.copy() for job in candidates if job.status in wanted]
        _sort_jobs(matched, order)
        if limit is not None:
            matched = matched[: max(limit, 0)]
        return matched

    async def claim(
        self,
        job_id: str,
        *,
        claim_owner: str,
        expected_version: int,
        reset_progress: bool = True,
    ) -> TransferJob | None:
        """Compare-and-set `queued -> processing`."""

        async with self._lock:
            job = self._get_unlocked(job_id)
            if job.status is not TransferJobStatus.QUEUED or job.version != expected_version:
                return None
            now = utc_now()
            job.status = TransferJobStatus.PROCESSING
            job.claim_owner = claim_owner
            if job.started_at is None:
                job.started_at = now
            if reset_progress:
                job.progress = 0
                job.current_file_index = 0
                job.transferred_bytes = 0
            job.version += 1
            job.updated_at = now
            self._sync_user_copy_unlocked(job)
            return job.copy()

    async def touch(self, job_id: str, *, claim_owner: str) -> bool:
        """Refresh heartbeat if the job is still owned."""

        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if job.status is not TransferJobStatus.PROCESSING:
                return False
            if job.claim_owner != claim_owner:
                return False
            job.updated_at = utc_now()
            self._sync_user_copy_unlocked(job)
            return True

    async def requeue_stale(self, *, stale_before: datetime, limit: int) -> list[str]:
        """Re-queue processing jobs whose heartbeat stopped, or fail them past the retry bound."""

        if limit <= 0:
            return []
        async with self._lock:
            stale = [
                job
                for job in self._jobs.values()
                if job.status is TransferJobStatus.PROCESSING and job.updated_at < stale_before
            ]
            stale.sort(key=lambda job: (job.updated_at, job.job_id))
            requeued: list[str] = []
            for job in stale[:limit]:
                now = utc_now()
                stale_requeue_patch(job, now=now).apply_to(job)
                job.version += 1
                job.updated_at = now
                self._sync_user_copy_unlocked(job)
                requeued.append(job.job_id)
            return requeued

    async def append_history(self, entry: TransferHistoryEntry) -> None:
        async with self._lock:
            self._history.setdefault(entry.user_id, []).append(entry)

    async def list_history(self, user_id: str, *, limit: int = 50) -> list[TransferHistoryEntry]:
        async with self._lock:
            entries = list(self._history.get(user_id, []))
        entries.sort(key=lambda entry: entry.timestamp, reverse=True)
        return entries[: max(limit, 0)]

    async def save_connection(self, connection: CloudConnection) -> None:
        async with self._lock:
            self._connections[(connection.user_id, connection.service_id)] = connection

    async def get_connection(self, user_id: str, service_id: str) -> CloudConnection | None:
        async with self._lock:
            return self._connections.get((user_id, service_id))

    async def close(self) -> None:
        """Nothing to release."""

    def _get_unlocked(self, job_id: str) -> TransferJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise TransferJobNotFoundError(f"Transfer job '{job_id}' not found.")
        return job

    def _sync_user_copy_unlocked(self, job: TransferJob) -> None:
        self._user_jobs.setdefault(job.user_id, {})[job.job_id] = job.copy()


__all__ = ["InMemoryTransferJobRepository"]
