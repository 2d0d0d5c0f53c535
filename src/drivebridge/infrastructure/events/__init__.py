"""Transfer event publisher implementations."""

from drivebridge.infrastructure.events.mqtt_transfer_event_publisher import (
    MqttTransferEventPublisher,
)
from drivebridge.infrastructure.events.noop_transfer_event_publisher import (
    NoopTransferEventPublisher,
)

__all__ = ["MqttTransferEventPublisher", "NoopTransferEventPublisher"]
