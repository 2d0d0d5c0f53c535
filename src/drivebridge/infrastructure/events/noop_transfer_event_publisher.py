"""No-op transfer event publisher."""

from __future__ import annotations

from drivebridge.domain.monitoring_models import TransferProgressEvent
from drivebridge.domain.ports import TransferEventPublisher


class NoopTransferEventPublisher(TransferEventPublisher):
    """No-op implementation for environments without a notification channel."""

    async def publish_progress(self, event: TransferProgressEvent) -> None:
        _ = event

    def close(self) -> None:
        """Nothing to release."""


__all__ = ["NoopTransferEventPublisher"]
