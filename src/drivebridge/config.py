"""Application settings."""

from enum import StrEnum

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from drivebridge.infrastructure.providers.google_drive import (
    GOOGLE_DRIVE_API_URL,
    GOOGLE_DRIVE_UPLOAD_URL,
)
from drivebridge.infrastructure.providers.onedrive import MICROSOFT_GRAPH_API_URL


class RepositoryBackend(StrEnum):
    """Available persistence adapters for transfer jobs."""

    IN_MEMORY = "in_memory"
    POSTGRES = "postgres"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "DriveBridge Transfers"
    api_prefix: str = ""
    worker_id: str = "worker-local"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    scheduler_enabled: bool = True
    scheduler_poll_seconds: float = 5.0
    scheduler_max_concurrent_jobs: int = 3
    transfer_default_max_retries: int = 3
    transfer_resume_from_checkpoint: bool = False
    transfer_heartbeat_seconds: float = 10.0
    transfer_stale_after_seconds: float = 120.0
    transfer_price_cents_per_gib: int = 0
    repository_backend: RepositoryBackend = RepositoryBackend.IN_MEMORY
    postgres_dsn: str | None = None
    postgres_pool_min_size: int = 1
    postgres_pool_max_size: int = 10
    provider_timeout_seconds: float = 60.0
    google_drive_api_url: str = GOOGLE_DRIVE_API_URL
    google_drive_upload_url: str = GOOGLE_DRIVE_UPLOAD_URL
    microsoft_graph_api_url: str = MICROSOFT_GRAPH_API_URL
    transfer_events_mqtt_enabled: bool = False
    transfer_events_mqtt_host: str | None = None
    transfer_events_mqtt_port: int = 1883
    transfer_events_mqtt_username: str | None = None
    transfer_events_mqtt_password: str | None = None
    transfer_events_mqtt_topic_prefix: str = "drivebridge"
    transfer_events_mqtt_qos: int = 0
    wallet_ledger_url: str | None = None
    wallet_ledger_token: str | None = None
    wallet_timeout_seconds: float = 10.0

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Ensure backend-specific and scheduling settings are valid."""

        if self.repository_backend == RepositoryBackend.POSTGRES and not self.postgres_dsn:
            raise ValueError(
                "DRIVEBRIDGE_POSTGRES_DSN is required when "
                "DRIVEBRIDGE_REPOSITORY_BACKEND=postgres."
            )
        if self.postgres_pool_min_size < 1:
            raise ValueError("DRIVEBRIDGE_POSTGRES_POOL_MIN_SIZE must be >= 1.")
        if self.postgres_pool_max_size < self.postgres_pool_min_size:
            raise ValueError(
                "DRIVEBRIDGE_POSTGRES_POOL_MAX_SIZE must be >= "
                "DRIVEBRIDGE_POSTGRES_POOL_MIN_SIZE."
            )
        if self.transfer_events_mqtt_enabled and not self.transfer_events_mqtt_host:
            raise ValueError(
                "DRIVEBRIDGE_TRANSFER_EVENTS_MQTT_HOST is required when "
                "DRIVEBRIDGE_TRANSFER_EVENTS_MQTT_ENABLED=true."
            )
        if self.transfer_events_mqtt_port < 1:
            raise ValueError("DRIVEBRIDGE_TRANSFER_EVENTS_MQTT_PORT must be >= 1.")
        if self.transfer_events_mqtt_qos not in {0, 1, 2}:
            raise ValueError("DRIVEBRIDGE_TRANSFER_EVENTS_MQTT_QOS must be one of 0, 1, 2.")
        if self.scheduler_poll_seconds <= 0:
            raise ValueError("DRIVEBRIDGE_SCHEDULER_POLL_SECONDS must be > 0.")
        if self.scheduler_max_concurrent_jobs < 1:
            raise ValueError("DRIVEBRIDGE_SCHEDULER_MAX_CONCURRENT_JOBS must be >= 1.")
        if self.transfer_default_max_retries < 0:
            raise ValueError("DRIVEBRIDGE_TRANSFER_DEFAULT_MAX_RETRIES must be >= 0.")
        if self.transfer_heartbeat_seconds <= 0:
            raise ValueError("DRIVEBRIDGE_TRANSFER_HEARTBEAT_SECONDS must be > 0.")
        if self.transfer_heartbeat_seconds >= self.transfer_stale_after_seconds:
            raise ValueError(
                "DRIVEBRIDGE_TRANSFER_HEARTBEAT_SECONDS must be < "
                "DRIVEBRIDGE_TRANSFER_STALE_AFTER_SECONDS."
            )
        if self.transfer_price_cents_per_gib < 0:
            raise ValueError("DRIVEBRIDGE_TRANSFER_PRICE_CENTS_PER_GIB must be >= 0.")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("DRIVEBRIDGE_PROVIDER_TIMEOUT_SECONDS must be > 0.")
        if self.wallet_timeout_seconds <= 0:
            raise ValueError("DRIVEBRIDGE_WALLET_TIMEOUT_SECONDS must be > 0.")
        return self

    model_config = SettingsConfigDict(env_prefix="DRIVEBRIDGE_", extra="ignore")


__all__ = ["RepositoryBackend", "Settings"]
