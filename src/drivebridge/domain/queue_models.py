"""HTTP payload models for the transfer queue API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from drivebridge.domain.entities import SourceFile, TransferHistoryEntry, TransferJob
from drivebridge.domain.transfer_jobs import TransferJobStatus


class QueueModel(BaseModel):
    """Base model with camelCase aliases for queue routes."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class SourceFilePayload(QueueModel):
    """File descriptor as submitted by the UI.

    Browser clients send their whole file-list item, including display fields
    such as `mimeType` or a formatted `size` like "2.3 KB". Only the id, the
    name and a numeric size are kept.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    size: int | None = Field(default=None, ge=0)

    @field_validator("size", mode="before")
    @classmethod
    def numeric_size_or_none(cls, value: object) -> object:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value if value >= 0 else None
        if isinstance(value, str):
            text = value.strip()
            return int(text) if text.isdigit() else None
        if isinstance(value, float):
            return int(value) if value.is_integer() and value >= 0 else None
        return None

    def to_source_file(self) -> SourceFile:
        return SourceFile(id=self.id, name=self.name, size=self.size)


class TransferSubmitRequest(QueueModel):
    """Body of `POST /transfers`.

    Required fields are optional at the schema level so that missing values are
    reported as a 400 with a message instead of a schema error.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    source_service: str | None = Field(default=None, alias="sourceService")
    destination_service: str | None = Field(default=None, alias="destinationService")
    source_files: list[SourceFilePayload] | None = Field(default=None, alias="sourceFiles")
    destination_path: str | None = Field(default=None, alias="destinationPath")
    priority: int | None = None
    max_retries: int | None = Field(default=None, alias="maxRetries", ge=0)


class TransferSubmitResponse(QueueModel):
    success: bool = True
    job_id: str = Field(alias="jobId")
    message: str = "Transfer job queued successfully"


class TransferUpdateRequest(QueueModel):
    """Body of `PUT /transfers`."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    job_id: str | None = Field(default=None, alias="jobId")
    status: TransferJobStatus | None = None
    progress: int | None = None
    error: str | None = None
    user_id: str | None = Field(default=None, alias="userId")


class TransferJobResponse(QueueModel):
    """Public view of one job."""

    id: str
    user_id: str = Field(alias="userId")
    source_service: str = Field(alias="sourceService")
    destination_service: str = Field(alias="destinationService")
    source_files: list[SourceFilePayload] = Field(alias="sourceFiles")
    destination_path: str = Field(alias="destinationPath")
    status: TransferJobStatus
    progress: int
    created_at: datetime = Field(alias="createdAt")
    started_at: datetime | None = Field(default=None, alias="startedAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    updated_at: datetime = Field(alias="updatedAt")
    error: str | None = None
    retry_count: int = Field(alias="retryCount")
    max_retries: int = Field(alias="maxRetries")
    priority: int
    version: int

    @classmethod
    def from_job(cls, job: TransferJob) -> TransferJobResponse:
        return cls(
            id=job.job_id,
            user_id=job.user_id,
            source_service=job.source_service,
            destination_service=job.destination_service,
            source_files=[
                SourceFilePayload(id=item.id, name=item.name, size=item.size)
                for item in job.source_files
            ],
            destination_path=job.destination_path,
            status=job.status,
            progress=job.progress,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            updated_at=job.updated_at,
            error=job.error,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            priority=job.priority,
            version=job.version,
        )


class TransferJobEnvelope(QueueModel):
    job: TransferJobResponse


class TransferJobListResponse(QueueModel):
    jobs: list[TransferJobResponse]


class TransferUpdateResponse(QueueModel):
    success: bool = True
    job: TransferJobResponse


class TransferStatusOverviewResponse(QueueModel):
    """Active and recently finished jobs for one user."""

    active_jobs: list[TransferJobResponse] = Field(alias="activeJobs")
    recent_jobs: list[TransferJobResponse] = Field(alias="recentJobs")
    total_active: int = Field(alias="totalActive")
    total_recent: int = Field(alias="totalRecent")


class TransferHistoryResponse(QueueModel):
    id: str
    job_id: str = Field(alias="jobId")
    timestamp: datetime
    from_service: str = Field(alias="fromService")
    to_service: str = Field(alias="toService")
    file_names: list[str] = Field(alias="fileNames")
    total_bytes: int = Field(alias="totalBytes")
    cost_cents: int = Field(alias="costCents")
    charged: bool
    status: TransferJobStatus

    @classmethod
    def from_entry(cls, entry: TransferHistoryEntry) -> TransferHistoryResponse:
        return cls(
            id=entry.id,
            job_id=entry.job_id,
            timestamp=entry.timestamp,
            from_service=entry.from_service,
            to_service=entry.to_service,
            file_names=list(entry.file_names),
            total_bytes=entry.total_bytes,
            cost_cents=entry.cost_cents,
            charged=entry.charged,
            status=entry.status,
        )


class TransferHistoryListResponse(QueueModel):
    history: list[TransferHistoryResponse]


class ConnectionUpsertRequest(QueueModel):
    """Body of `PUT /connections`."""

    user_id: str = Field(alias="userId", min_length=1)
    service_id: str = Field(alias="serviceId", min_length=1)
    provider: str = Field(min_length=1)
    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    display_name: str | None = Field(default=None, alias="displayName")


__all__ = [
    "ConnectionUpsertRequest",
    "QueueModel",
    "SourceFilePayload",
    "TransferHistoryListResponse",
    "TransferHistoryResponse",
    "TransferJobEnvelope",
    "TransferJobListResponse",
    "TransferJobResponse",
    "TransferStatusOverviewResponse",
    "TransferSubmitRequest",
    "TransferSubmitResponse",
    "TransferUpdateRequest",
    "TransferUpdateResponse",
]
