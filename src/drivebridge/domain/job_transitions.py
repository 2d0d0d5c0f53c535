"""Status transitions and retry policy for transfer jobs.

The executor and the queue API never assign `status` directly; they build a
`TransferJobPatch` here so that the progress/completion invariants and the
retry bound are enforced in one place.
"""

from __future__ import annotations

from datetime import datetime

from drivebridge.domain.entities import TransferJob
from drivebridge.domain.errors import TransferJobConflictError, TransferJobValidationError
from drivebridge.domain.transfer_jobs import (
    ACTIVE_TRANSFER_JOB_STATUSES,
    HISTORICAL_TRANSFER_JOB_STATUSES,
    TransferJobPatch,
    TransferJobStatus,
)

COMPLETE_PROGRESS = 100

STALE_HEARTBEAT_MESSAGE = "Worker stopped reporting progress"


def progress_percent(completed_files: int, total_files: int) -> int:
    """Return whole-percent progress, rounding half up.

    Values are capped at 99 while files remain, so 100 is only ever reported
    together with the `completed` status.
    """

    if total_files <= 0:
        return 0
    completed_files = max(0, min(completed_files, total_files))
    percent = (completed_files * 200 + total_files) // (2 * total_files)
    if completed_files < total_files:
        return min(percent, COMPLETE_PROGRESS - 1)
    return COMPLETE_PROGRESS


def is_dispatchable(job: TransferJob) -> bool:
    """Only queued jobs may be picked up by the executor."""

    return job.status is TransferJobStatus.QUEUED


def file_progress_patch(
    job: TransferJob,
    *,
    completed_files: int,
    transferred_bytes: int,
) -> TransferJobPatch:
    """Patch persisted after one more file finished while processing."""

    return TransferJobPatch(
        progress=progress_percent(completed_files, job.file_count),
        current_file_index=completed_files,
        transferred_bytes=transferred_bytes,
    )


def completion_patch(
    job: TransferJob,
    *,
    transferred_bytes: int,
    now: datetime,
) -> TransferJobPatch:
    return TransferJobPatch(
        status=TransferJobStatus.COMPLETED,
        progress=COMPLETE_PROGRESS,
        completed_at=now,
        current_file_index=job.file_count,
        transferred_bytes=transferred_bytes,
        clear_error=True,
        clear_claim_owner=True,
    )


def terminal_failure_patch(message: str, *, now: datetime) -> TransferJobPatch:
    """Move a job to `failed` for good, keeping the underlying message."""

    return TransferJobPatch(
        status=TransferJobStatus.FAILED,
        error=message,
        completed_at=now,
        clear_claim_owner=True,
    )


def retry_or_fail_patch(
    job: TransferJob,
    message: str,
    *,
    now: datetime,
    keep_checkpoint: bool = False,
) -> TransferJobPatch:
    """Re-queue a failed attempt while retries remain, else fail terminally."""

    if job.retry_count >= job.max_retries:
        return terminal_failure_patch(message, now=now)

    retry_count = job.retry_count + 1
    if keep_checkpoint:
        return TransferJobPatch(
            status=TransferJobStatus.QUEUED,
            retry_count=retry_count,
            error=f"Retry {retry_count}/{job.max_retries}",
            clear_claim_owner=True,
        )
    return TransferJobPatch(
        status=TransferJobStatus.QUEUED,
        retry_count=retry_count,
        progress=0,
        current_file_index=0,
        transferred_bytes=0,
        error=f"Retry {retry_count}/{job.max_retries}",
        clear_claim_owner=True,
    )


def stale_requeue_patch(job: TransferJob, *, now: datetime) -> TransferJobPatch:
    """Count a lost heartbeat as a failed attempt.

    The checkpoint is left alone; a restarting claim resets it anyway.
    """

    return retry_or_fail_patch(job, STALE_HEARTBEAT_MESSAGE, now=now, keep_checkpoint=True)


def external_update_patch(
    job: TransferJob,
    *,
    status: TransferJobStatus | None,
    progress: int | None,
    error: str | None,
    now: datetime,
) -> TransferJobPatch:
    """Validate a client-requested merge and stamp lifecycle timestamps."""

    if progress is not None and not 0 <= progress <= COMPLETE_PROGRESS:
        raise TransferJobValidationError("progress must be between 0 and 100.")

    target = status or job.status
    if job.status is TransferJobStatus.COMPLETED and target is not TransferJobStatus.COMPLETED:
        raise TransferJobConflictError(f"Transfer job '{job.job_id}' is already completed.")

    if target is TransferJobStatus.COMPLETED:
        if progress is not None and progress != COMPLETE_PROGRESS:
            raise TransferJobValidationError("completed jobs must report progress 100.")
        progress = COMPLETE_PROGRESS
    elif progress == COMPLETE_PROGRESS or (
        progress is None and job.progress == COMPLETE_PROGRESS
    ):
        raise TransferJobValidationError("progress 100 is reserved for completed jobs.")

    retry_count: int | None = None
    clear_error = False
    current_file_index: int | None = None
    transferred_bytes: int | None = None
    if job.status is TransferJobStatus.FAILED and target is TransferJobStatus.QUEUED:
        # manual retry
        retry_count = 0
        current_file_index = 0
        transferred_bytes = 0
        if progress is None:
            progress = 0
        clear_error = error is None

    started_at = None
    if target is TransferJobStatus.PROCESSING and job.started_at is None:
        started_at = now

    completed_at = None
    clear_completed_at = False
    if target in HISTORICAL_TRANSFER_JOB_STATUSES:
        if job.completed_at is None or job.status is not target:
            completed_at = now
    elif target in ACTIVE_TRANSFER_JOB_STATUSES and job.completed_at is not None:
        clear_completed_at = True

    clear_claim_owner = (
        job.status is TransferJobStatus.PROCESSING
        and target is not TransferJobStatus.PROCESSING
        and job.claim_owner is not None
    )

    return TransferJobPatch(
        status=status,
        progress=progress,
        error=error,
        retry_count=retry_count,
        started_at=started_at,
        completed_at=completed_at,
        current_file_index=current_file_index,
        transferred_bytes=transferred_bytes,
        clear_error=clear_error,
        clear_completed_at=clear_completed_at,
        clear_claim_owner=clear_claim_owner,
    )


__all__ = [
    "COMPLETE_PROGRESS",
    "STALE_HEARTBEAT_MESSAGE",
    "completion_patch",
    "external_update_patch",
    "file_progress_patch",
    "is_dispatchable",
    "progress_percent",
    "retry_or_fail_patch",
    "stale_requeue_patch",
    "terminal_failure_patch",
]
