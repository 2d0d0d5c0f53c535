"""Submission, listing and manual updates of transfer jobs."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol
from uuid import uuid4

from drivebridge.domain.entities import (
    DEFAULT_DESTINATION_PATH,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PRIORITY,
    CloudConnection,
    TransferJob,
    utc_now,
)
from drivebridge.domain.errors import DuplicateTransferJobError, TransferJobValidationError
from drivebridge.domain.job_transitions import external_update_patch
from drivebridge.domain.ports import (
    ConnectionRepository,
    TransferHistoryRepository,
    TransferJobRepository,
)
from drivebridge.domain.queue_models import (
    ConnectionUpsertRequest,
    TransferHistoryListResponse,
    TransferHistoryResponse,
    TransferJobEnvelope,
    TransferJobListResponse,
    TransferJobResponse,
    TransferStatusOverviewResponse,
    TransferSubmitRequest,
    TransferSubmitResponse,
    TransferUpdateRequest,
    TransferUpdateResponse,
)
from drivebridge.domain.transfer_jobs import (
    ACTIVE_TRANSFER_JOB_STATUSES,
    HISTORICAL_TRANSFER_JOB_STATUSES,
    TransferJobOrder,
    TransferJobStatus,
)

logger = logging.getLogger(__name__)

ACTIVE_LISTING_LIMIT = 50
RECENT_LISTING_LIMIT = 20
HISTORY_LISTING_LIMIT = 50

_MAX_ID_ATTEMPTS = 3


class _SchedulerWaker(Protocol):
    def wake(self) -> None:
        """Ask the scheduler to poll now."""


def generate_job_id() -> str:
    """Return an id of the form `transfer_{epoch_ms}_{random}`."""

    return f"transfer_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class TransferQueueService:
    """Queue API used by HTTP routes."""

    def __init__(
        self,
        repository: TransferJobRepository,
        history_repository: TransferHistoryRepository | None = None,
        connection_repository: ConnectionRepository | None = None,
        scheduler: _SchedulerWaker | None = None,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
        id_factory: Callable[[], str] = generate_job_id,
    ) -> None:
        self._repository = repository
        if history_repository is None and isinstance(repository, TransferHistoryRepository):
            history_repository = repository
        if connection_repository is None and isinstance(repository, ConnectionRepository):
            connection_repository = repository
        self._history_repository = history_repository
        self._connection_repository = connection_repository
        self._scheduler = scheduler
        self._default_max_retries = max(default_max_retries, 0)
        self._id_factory = id_factory

    async def submit(self, request: TransferSubmitRequest) -> TransferSubmitResponse:
        """Validate and enqueue a new job."""

        missing = [
            alias
            for alias, value in (
                ("userId", request.user_id),
                ("sourceService", request.source_service),
                ("destinationService", request.destination_service),
            )
            if _blank(value)
        ]
        if not request.source_files:
            missing.append("sourceFiles")
        if missing:
            raise TransferJobValidationError(f"Missing required fields: {', '.join(missing)}")
        assert request.user_id is not None
        assert request.source_service is not None
        assert request.destination_service is not None
        assert request.source_files is not None

        destination_path = request.destination_path
        if _blank(destination_path):
            destination_path = DEFAULT_DESTINATION_PATH
        assert destination_path is not None

        max_retries = (
            self._default_max_retries if request.max_retries is None else request.max_retries
        )
        now = utc_now()
        for attempt in range(1, _MAX_ID_ATTEMPTS + 1):
            job = TransferJob(
                job_id=self._id_factory(),
                user_id=request.user_id.strip(),
                source_service=request.source_service.strip(),
                destination_service=request.destination_service.strip(),
                source_files=[item.to_source_file() for item in request.source_files],
                destination_path=destination_path.strip(),
                priority=DEFAULT_PRIORITY if request.priority is None else request.priority,
                max_retries=max_retries,
                created_at=now,
                updated_at=now,
            )
            try:
                await self._repository.create(job)
            except DuplicateTransferJobError:
                if attempt == _MAX_ID_ATTEMPTS:
                    raise
                continue
            break

        logger.info(
            "Queued transfer job '%s' for user '%s': %s files from '%s' to '%s'.",
            job.job_id,
            job.user_id,
            job.file_count,
            job.source_service,
            job.destination_service,
        )
        self._wake_scheduler()
        return TransferSubmitResponse(job_id=job.job_id)

    async def get_job(self, job_id: str) -> TransferJobEnvelope:
        job = await self._repository.get(job_id)
        return TransferJobEnvelope(job=TransferJobResponse.from_job(job))

    async def list_active_jobs(
        self,
        user_id: str,
        limit: int = ACTIVE_LISTING_LIMIT,
    ) -> TransferJobListResponse:
        """Return the user's queued, processing and paused jobs, newest first."""

        jobs = await self._repository.query(
            ACTIVE_TRANSFER_JOB_STATUSES,
            user_id=user_id,
            order=TransferJobOrder.NEWEST_FIRST,
            limit=limit,
        )
        return TransferJobListResponse(jobs=[TransferJobResponse.from_job(job) for job in jobs])

    async def list_recent_jobs(
        self,
        user_id: str,
        limit: int = RECENT_LISTING_LIMIT,
    ) -> TransferJobListResponse:
        """Return the user's completed and failed jobs, most recently finished first."""

        jobs = await self._repository.query(
            HISTORICAL_TRANSFER_JOB_STATUSES,
            user_id=user_id,
            order=TransferJobOrder.RECENTLY_FINISHED,
            limit=limit,
        )
        return TransferJobListResponse(jobs=[TransferJobResponse.from_job(job) for job in jobs])

    async def get_status_overview(self, user_id: str) -> TransferStatusOverviewResponse:
        active = await self.list_active_jobs(user_id)
        recent = await self.list_recent_jobs(user_id)
        return TransferStatusOverviewResponse(
            active_jobs=active.jobs,
            recent_jobs=recent.jobs,
            total_active=len(active.jobs),
            total_recent=len(recent.jobs),
        )

    async def update_job(self, request: TransferUpdateRequest) -> TransferUpdateResponse:
        """Merge client-provided fields into one job."""

        if _blank(request.job_id):
            raise TransferJobValidationError("Missing jobId")
        assert request.job_id is not None

        job = await self._repository.get(request.job_id)
        if not _blank(request.user_id) and request.user_id != job.user_id:
            raise TransferJobValidationError(
                f"Transfer job '{job.job_id}' does not belong to user '{request.user_id}'."
            )

        patch = external_update_patch(
            job,
            status=request.status,
            progress=request.progress,
            error=request.error,
            now=utc_now(),
        )
        updated = await self._repository.update(
            job.job_id,
            patch,
            expected_status=job.status,
        )
        if updated.status is not job.status:
            logger.info(
                "Transfer job '%s' moved from '%s' to '%s' by request.",
                updated.job_id,
                job.status,
                updated.status,
            )
        if updated.status is TransferJobStatus.QUEUED:
            self._wake_scheduler()
        return TransferUpdateResponse(job=TransferJobResponse.from_job(updated))

    async def list_history(
        self,
        user_id: str,
        limit: int = HISTORY_LISTING_LIMIT,
    ) -> TransferHistoryListResponse:
        repository = self._history_repository
        if repository is None:
            return TransferHistoryListResponse(history=[])
        entries = await repository.list_history(user_id, limit=limit)
        return TransferHistoryListResponse(
            history=[TransferHistoryResponse.from_entry(entry) for entry in entries]
        )

    async def save_connection(self, request: ConnectionUpsertRequest) -> None:
        """Store provider credentials obtained by the OAuth flow."""

        repository = self._connection_repository
        if repository is None:
            raise TransferJobValidationError("Connection storage is not configured.")
        await repository.save_connection(
            CloudConnection(
                user_id=request.user_id,
                service_id=request.service_id,
                provider=request.provider,
                access_token=request.access_token,
                refresh_token=request.refresh_token,
                expires_at=request.expires_at,
                display_name=request.display_name,
            )
        )

    def _wake_scheduler(self) -> None:
        if self._scheduler is not None:
            self._scheduler.wake()


__all__ = [
    "ACTIVE_LISTING_LIMIT",
    "HISTORY_LISTING_LIMIT",
    "RECENT_LISTING_LIMIT",
    "TransferQueueService",
    "generate_job_id",
]
