"""Domain entities."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from drivebridge.domain.transfer_jobs import (
    ACTIVE_TRANSFER_JOB_STATUSES,
    TransferJobStatus,
)

DEFAULT_DESTINATION_PATH = "root"
DEFAULT_MAX_RETRIES = 3
DEFAULT_PRIORITY = 1


def utc_now() -> datetime:
    """Return an aware timestamp in UTC."""

    return datetime.now(tz=UTC)


@dataclass(slots=True, frozen=True)
class SourceFile:
    """Provider-specific file descriptor selected for transfer."""

    id: str
    name: str
    size: int | None = None


@dataclass(slots=True, frozen=True)
class FileRef:
    """Reference to a file written by a destination provider."""

    id: str
    name: str
    size: int | None = None


@dataclass(slots=True)
class TransferJob:
    """Mutable representation of one cross-provider copy request."""

    job_id: str
    user_id: str
    source_service: str
    destination_service: str
    source_files: list[SourceFile]
    destination_path: str = DEFAULT_DESTINATION_PATH
    status: TransferJobStatus = TransferJobStatus.QUEUED
    progress: int = 0
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    priority: int = DEFAULT_PRIORITY
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 0
    claim_owner: str | None = None
    current_file_index: int = 0
    transferred_bytes: int = 0

    @property
    def is_active(self) -> bool:
        """Whether the job belongs to the active listing."""

        return self.status in ACTIVE_TRANSFER_JOB_STATUSES

    @property
    def file_count(self) -> int:
        return len(self.source_files)

    def copy(self) -> TransferJob:
        """Return a detached copy safe to hand out of a store."""

        return replace(self, source_files=list(self.source_files))


@dataclass(slots=True, frozen=True)
class TransferHistoryEntry:
    """Record appended after a job completes."""

    id: str
    user_id: str
    job_id: str
    timestamp: datetime
    from_service: str
    to_service: str
    file_names: list[str]
    total_bytes: int
    cost_cents: int = 0
    charged: bool = True
    status: TransferJobStatus = TransferJobStatus.COMPLETED


@dataclass(slots=True, frozen=True)
class CloudConnection:
    """Stored provider credentials for one user and service."""

    user_id: str
    service_id: str
    provider: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    display_name: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now())


__all__ = [
    "CloudConnection",
    "DEFAULT_DESTINATION_PATH",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_PRIORITY",
    "FileRef",
    "SourceFile",
    "TransferHistoryEntry",
    "TransferJob",
    "utc_now",
]
