"""MQTT transfer progress publisher."""

from __future__ import annotations

import asyncio
import json
import time
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

from drivebridge.domain.monitoring_models import TransferProgressEvent
from drivebridge.domain.ports import TransferEventPublisher


def _topic_segment(value: str) -> str:
    """Percent-encode one topic level so `/`, `+` and `#` cannot change the topic."""

    return quote(value, safe="")


class MqttTransferEventPublisher(TransferEventPublisher):
    """Publish job progress events to per-user MQTT topics."""

    def __init__(
        self,
        worker_id: str,
        broker_host: str,
        broker_port: int = 1883,
        topic_prefix: str = "drivebridge",
        qos: int = 0,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        if not broker_host.strip():
            raise ValueError("broker_host cannot be empty.")
        if qos not in {0, 1, 2}:
            raise ValueError("qos must be one of 0, 1, 2.")

        self._worker_id = worker_id
        self._topic_prefix = topic_prefix.strip().strip("/")
        self._qos = qos

        try:
            import paho.mqtt.client as mqtt  # type: ignore[import-untyped]
        except ModuleNotFoundError as exc:
            raise RuntimeError(
                "paho-mqtt is required for MQTT transfer events. "
                "Install project dependencies first."
            ) from exc

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"drivebridge-{worker_id}",
        )
        if username is not None:
            client.username_pw_set(username=username, password=password)
        self._connect_with_retry(
            client=client,
            broker_host=broker_host,
            broker_port=broker_port,
        )
        client.loop_start()
        self._client = client

    async def publish_progress(self, event: TransferProgressEvent) -> None:
        payload: dict[str, object] = {
            "eventType": "progress",
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "workerId": self._worker_id,
            "jobId": event.job_id,
            "userId": event.user_id,
            "status": event.status.value,
            "progress": event.progress,
            "completedFiles": event.completed_files,
            "totalFiles": event.total_files,
            "bytesTransferred": event.bytes_transferred,
            "currentFileName": event.current_file_name,
            "error": event.error,
            "retryCount": event.retry_count,
            "finished": event.finished,
        }
        topic = (
            f"{self._topic_prefix}/users/{_topic_segment(event.user_id)}"
            f"/transfers/{_topic_segment(event.job_id)}"
        )
        message = json.dumps(payload, separators=(",", ":"))
        await asyncio.to_thread(self._client.publish, topic, message, self._qos)

    def close(self) -> None:
        """Stop the network loop and disconnect."""

        self._client.loop_stop()
        self._client.disconnect()

    def _connect_with_retry(
        self,
        client: Any,
        broker_host: str,
        broker_port: int,
        max_attempts: int = 20,
    ) -> None:
        """Connect to MQTT broker with bounded retry/backoff."""

        delay_seconds = 0.5
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                client.connect(host=broker_host, port=broker_port, keepalive=60)
                return
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if attempt == max_attempts:
                    break
                time.sleep(delay_seconds)
                delay_seconds = min(3.0, delay_seconds * 1.5)

        raise RuntimeError(
            f"Failed to connect to MQTT broker {broker_host}:{broker_port} "
            f"after {max_attempts} attempts."
        ) from last_error


__all__ = ["MqttTransferEventPublisher"]
