"""Progress events broadcast while jobs run."""

from __future__ import annotations

from dataclasses import dataclass

from drivebridge.domain.entities import TransferJob
from drivebridge.domain.transfer_jobs import TransferJobStatus


@dataclass(slots=True, frozen=True)
class TransferProgressEvent:
    """Snapshot of one job published to the notification channel."""

    job_id: str
    user_id: str
    status: TransferJobStatus
    progress: int
    completed_files: int
    total_files: int
    bytes_transferred: int = 0
    current_file_name: str | None = None
    error: str | None = None
    retry_count: int = 0

    @classmethod
    def from_job(
        cls,
        job: TransferJob,
        *,
        current_file_name: str | None = None,
    ) -> TransferProgressEvent:
        return cls(
            job_id=job.job_id,
            user_id=job.user_id,
            status=job.status,
            progress=job.progress,
            completed_files=job.current_file_index,
            total_files=job.file_count,
            bytes_transferred=job.transferred_bytes,
            current_file_name=current_file_name,
            error=job.error,
            retry_count=job.retry_count,
        )

    @property
    def finished(self) -> bool:
        return self.status in {TransferJobStatus.COMPLETED, TransferJobStatus.FAILED}


__all__ = ["TransferProgressEvent"]
