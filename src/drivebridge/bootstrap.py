"""Application bootstrap/wiring."""

import logging
from dataclasses import dataclass

from drivebridge.application.services import (
    TransferJobExecutor,
    TransferQueueService,
    TransferScheduler,
)
from drivebridge.config import RepositoryBackend, Settings
from drivebridge.domain.ports import (
    ConnectionRepository,
    TransferHistoryRepository,
    WalletLedger,
)
from drivebridge.infrastructure.connections import StoredConnectionResolver
from drivebridge.infrastructure.events import (
    MqttTransferEventPublisher,
    NoopTransferEventPublisher,
)
from drivebridge.infrastructure.providers import build_default_provider_registry
from drivebridge.infrastructure.repositories import (
    InMemoryTransferJobRepository,
    PostgresTransferJobRepository,
)
from drivebridge.infrastructure.wallet import FreeWalletLedger, HttpWalletLedger

logger = logging.getLogger(__name__)

TransferRepository = InMemoryTransferJobRepository | PostgresTransferJobRepository
TransferEvents = MqttTransferEventPublisher | NoopTransferEventPublisher


@dataclass(slots=True, frozen=True)
class TransferRuntime:
    """Long-lived service graph owned by the process entry point."""

    repository: TransferRepository
    queue_service: TransferQueueService
    executor: TransferJobExecutor
    scheduler: TransferScheduler
    event_publisher: TransferEvents

    async def close(self) -> None:
        """Release the broker connection and the database pool."""

        try:
            self.event_publisher.close()
        finally:
            await self.repository.close()


def _build_repository(settings: Settings) -> TransferRepository:
    if settings.repository_backend == RepositoryBackend.POSTGRES:
        if settings.postgres_dsn is None:
            raise ValueError(
                "DRIVEBRIDGE_POSTGRES_DSN is required when "
                "DRIVEBRIDGE_REPOSITORY_BACKEND=postgres."
            )
        return PostgresTransferJobRepository(
            dsn=settings.postgres_dsn,
            min_pool_size=settings.postgres_pool_min_size,
            max_pool_size=settings.postgres_pool_max_size,
        )
    return InMemoryTransferJobRepository()


def _build_transfer_event_publisher(settings: Settings) -> TransferEvents:
    if settings.transfer_events_mqtt_enabled:
        if settings.transfer_events_mqtt_host is None:
            raise ValueError(
                "DRIVEBRIDGE_TRANSFER_EVENTS_MQTT_HOST is required when "
                "DRIVEBRIDGE_TRANSFER_EVENTS_MQTT_ENABLED=true."
            )
        return MqttTransferEventPublisher(
            worker_id=settings.worker_id,
            broker_host=settings.transfer_events_mqtt_host,
            broker_port=settings.transfer_events_mqtt_port,
            topic_prefix=settings.transfer_events_mqtt_topic_prefix,
            qos=settings.transfer_events_mqtt_qos,
            username=settings.transfer_events_mqtt_username,
            password=settings.transfer_events_mqtt_password,
        )
    return NoopTransferEventPublisher()


def _build_wallet_ledger(settings: Settings) -> WalletLedger:
    if settings.wallet_ledger_url is None:
        if settings.transfer_price_cents_per_gib > 0:
            logger.warning(
                "DRIVEBRIDGE_TRANSFER_PRICE_CENTS_PER_GIB is set but "
                "DRIVEBRIDGE_WALLET_LEDGER_URL is missing. Transfers will not be charged."
            )
        return FreeWalletLedger()
    return HttpWalletLedger(
        base_url=settings.wallet_ledger_url,
        timeout_seconds=settings.wallet_timeout_seconds,
        api_token=settings.wallet_ledger_token,
    )


def build_transfer_runtime(settings: Settings) -> TransferRuntime:
    """Compose service graph."""

    repository = _build_repository(settings)
    event_publisher = _build_transfer_event_publisher(settings)
    connection_repository: ConnectionRepository = repository
    history_repository: TransferHistoryRepository = repository
    provider_registry = build_default_provider_registry(
        timeout_seconds=settings.provider_timeout_seconds,
        google_drive_api_url=settings.google_drive_api_url,
        google_drive_upload_url=settings.google_drive_upload_url,
        microsoft_graph_api_url=settings.microsoft_graph_api_url,
    )
    executor = TransferJobExecutor(
        worker_id=settings.worker_id,
        repository=repository,
        connection_resolver=StoredConnectionResolver(
            connection_repository=connection_repository,
            provider_registry=provider_registry,
        ),
        event_publisher=event_publisher,
        history_repository=history_repository,
        wallet_ledger=_build_wallet_ledger(settings),
        price_cents_per_gib=settings.transfer_price_cents_per_gib,
        heartbeat_seconds=settings.transfer_heartbeat_seconds,
        resume_from_checkpoint=settings.transfer_resume_from_checkpoint,
    )
    scheduler = TransferScheduler(
        repository=repository,
        executor=executor,
        poll_interval_seconds=settings.scheduler_poll_seconds,
        max_concurrent_jobs=settings.scheduler_max_concurrent_jobs,
        stale_after_seconds=settings.transfer_stale_after_seconds,
    )
    queue_service = TransferQueueService(
        repository=repository,
        history_repository=history_repository,
        connection_repository=connection_repository,
        scheduler=scheduler,
        default_max_retries=settings.transfer_default_max_retries,
    )
    return TransferRuntime(
        repository=repository,
        queue_service=queue_service,
        executor=executor,
        scheduler=scheduler,
        event_publisher=event_publisher,
    )


__all__ = ["TransferRuntime", "build_transfer_runtime"]
