"""Transfer job states, partial updates and execution outcomes."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from drivebridge.domain.entities import TransferJob


class TransferJobStatus(StrEnum):
    """Lifecycle states of a transfer job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


ACTIVE_TRANSFER_JOB_STATUSES = frozenset(
    {
        TransferJobStatus.QUEUED,
        TransferJobStatus.PROCESSING,
        TransferJobStatus.PAUSED,
    }
)

HISTORICAL_TRANSFER_JOB_STATUSES = frozenset(
    {
        TransferJobStatus.COMPLETED,
        TransferJobStatus.FAILED,
    }
)


class TransferJobOrder(StrEnum):
    """Supported orderings for job store queries."""

    DISPATCH = "dispatch"
    NEWEST_FIRST = "newest_first"
    RECENTLY_FINISHED = "recently_finished"


class TransferOutcome(StrEnum):
    """Result of one executor run for one job."""

    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"


@dataclass(slots=True, frozen=True)
class TransferJobPatch:
    """Field-level merge applied to one stored job.

    `None` means "leave unchanged"; the `clear_*` flags reset nullable fields.
    """

    status: TransferJobStatus | None = None
    progress: int | None = None
    error: str | None = None
    retry_count: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    claim_owner: str | None = None
    current_file_index: int | None = None
    transferred_bytes: int | None = None
    clear_error: bool = False
    clear_completed_at: bool = False
    clear_claim_owner: bool = False

    def changes(self) -> dict[str, Any]:
        """Return the field assignments this patch performs."""

        values: dict[str, Any] = {}
        for item in fields(self):
            if item.name.startswith("clear_"):
                continue
            value = getattr(self, item.name)
            if value is not None:
                values[item.name] = value
        if self.clear_error:
            values["error"] = None
        if self.clear_completed_at:
            values["completed_at"] = None
        if self.clear_claim_owner:
            values["claim_owner"] = None
        return values

    def apply_to(self, job: TransferJob) -> bool:
        """Merge into `job` in place and report whether anything changed."""

        changed = False
        for name, value in self.changes().items():
            if getattr(job, name) != value:
                setattr(job, name, value)
                changed = True
        return changed


__all__ = [
    "ACTIVE_TRANSFER_JOB_STATUSES",
    "HISTORICAL_TRANSFER_JOB_STATUSES",
    "TransferJobOrder",
    "TransferJobPatch",
    "TransferJobStatus",
    "TransferOutcome",
]
