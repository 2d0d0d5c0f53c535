"""Application services."""

from drivebridge.application.services.transfer_executor import TransferJobExecutor
from drivebridge.application.services.transfer_queue_service import TransferQueueService
from drivebridge.application.services.transfer_scheduler import (
    SchedulerCycleReport,
    TransferScheduler,
)

__all__ = [
    "SchedulerCycleReport",
    "TransferJobExecutor",
    "TransferQueueService",
    "TransferScheduler",
]
