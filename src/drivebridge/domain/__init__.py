"""Domain public API."""

from drivebridge.domain.entities import (
    CloudConnection,
    FileRef,
    SourceFile,
    TransferHistoryEntry,
    TransferJob,
)
from drivebridge.domain.errors import (
    ConnectionExpiredError,
    ConnectionNotFoundError,
    DuplicateTransferJobError,
    TransferConnectionError,
    TransferIOError,
    TransferJobConflictError,
    TransferJobError,
    TransferJobNotFoundError,
    TransferJobStoreError,
    TransferJobValidationError,
    UnsupportedProviderError,
    WalletLedgerError,
)
from drivebridge.domain.monitoring_models import TransferProgressEvent
from drivebridge.domain.ports import (
    ConnectionRepository,
    ConnectionResolver,
    ProviderHandle,
    TransferEventPublisher,
    TransferHistoryRepository,
    TransferJobRepository,
    WalletLedger,
)
from drivebridge.domain.transfer_jobs import (
    ACTIVE_TRANSFER_JOB_STATUSES,
    HISTORICAL_TRANSFER_JOB_STATUSES,
    TransferJobOrder,
    TransferJobPatch,
    TransferJobStatus,
    TransferOutcome,
)

__all__ = [
    "ACTIVE_TRANSFER_JOB_STATUSES",
    "CloudConnection",
    "ConnectionExpiredError",
    "ConnectionNotFoundError",
    "ConnectionRepository",
    "ConnectionResolver",
    "DuplicateTransferJobError",
    "FileRef",
    "HISTORICAL_TRANSFER_JOB_STATUSES",
    "ProviderHandle",
    "SourceFile",
    "TransferConnectionError",
    "TransferEventPublisher",
    "TransferHistoryEntry",
    "TransferHistoryRepository",
    "TransferIOError",
    "TransferJob",
    "TransferJobConflictError",
    "TransferJobError",
    "TransferJobNotFoundError",
    "TransferJobOrder",
    "TransferJobPatch",
    "TransferJobRepository",
    "TransferJobStatus",
    "TransferJobStoreError",
    "TransferJobValidationError",
    "TransferOutcome",
    "TransferProgressEvent",
    "UnsupportedProviderError",
    "WalletLedger",
    "WalletLedgerError",
]
