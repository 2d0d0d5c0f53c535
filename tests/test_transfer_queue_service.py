from __future__ import annotations

import asyncio
from collections.abc import Iterator

import pytest

from drivebridge.application.services import TransferQueueService
from drivebridge.domain.errors import (
    DuplicateTransferJobError,
    TransferJobNotFoundError,
    TransferJobValidationError,
)
from drivebridge.domain.queue_models import (
    ConnectionUpsertRequest,
    TransferSubmitRequest,
    TransferUpdateRequest,
)
from drivebridge.domain.transfer_jobs import TransferJobStatus
from drivebridge.infrastructure.repositories import InMemoryTransferJobRepository


class RecordingScheduler:
    def __init__(self) -> None:
        self.wakes = 0

    def wake(self) -> None:
        self.wakes += 1


def _ids(*values: str) -> Iterator[str]:
    yield from values


def _submit_request(**overrides: object) -> TransferSubmitRequest:
    payload: dict[str, object] = {
        "userId": "u1",
        "sourceService": "google-drive",
        "destinationService": "onedrive",
        "sourceFiles": [{"id": "f1", "name": "a.txt", "size": 3}],
    }
    payload.update(overrides)
    return TransferSubmitRequest.model_validate(payload)


def test_submit_queues_job_and_wakes_scheduler() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        scheduler = RecordingScheduler()
        service = TransferQueueService(
            repository,
            scheduler=scheduler,
            default_max_retries=5,
            id_factory=lambda: "transfer_fixed",
        )

        response = await service.submit(_submit_request(priority=4))

        assert response.job_id == "transfer_fixed"
        assert scheduler.wakes == 1
        job = await repository.get("transfer_fixed")
        assert job.status is TransferJobStatus.QUEUED
        assert job.progress == 0
        assert job.retry_count == 0
        assert job.max_retries == 5
        assert job.priority == 4
        assert job.destination_path == "root"

    asyncio.run(scenario())


def test_submit_reports_every_missing_field() -> None:
    async def scenario() -> None:
        service = TransferQueueService(InMemoryTransferJobRepository())

        with pytest.raises(TransferJobValidationError) as exc_info:
            await service.submit(TransferSubmitRequest.model_validate({"userId": " "}))

        assert str(exc_info.value) == (
            "Missing required fields: userId, sourceService, destinationService, sourceFiles"
        )

    asyncio.run(scenario())


def test_submit_retries_on_duplicate_job_id() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        ids = _ids("transfer_a", "transfer_a", "transfer_b")
        service = TransferQueueService(repository, id_factory=lambda: next(ids))

        first = await service.submit(_submit_request())
        second = await service.submit(_submit_request())

        assert first.job_id == "transfer_a"
        assert second.job_id == "transfer_b"

    asyncio.run(scenario())


def test_submit_gives_up_after_repeated_duplicates() -> None:
    async def scenario() -> None:
        service = TransferQueueService(
            InMemoryTransferJobRepository(),
            id_factory=lambda: "transfer_same",
        )
        await service.submit(_submit_request())

        with pytest.raises(DuplicateTransferJobError):
            await service.submit(_submit_request())

    asyncio.run(scenario())


def test_update_unknown_job_raises_not_found() -> None:
    async def scenario() -> None:
        service = TransferQueueService(InMemoryTransferJobRepository())

        with pytest.raises(TransferJobNotFoundError):
            await service.update_job(
                TransferUpdateRequest.model_validate({"jobId": "missing", "status": "paused"})
            )

    asyncio.run(scenario())


def test_repeated_update_does_not_change_version() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        service = TransferQueueService(repository, id_factory=lambda: "transfer_1")
        await service.submit(_submit_request())
        request = TransferUpdateRequest.model_validate(
            {"jobId": "transfer_1", "status": "paused", "error": "paused by user"}
        )

        first = await service.update_job(request)
        second = await service.update_job(request)

        assert first.job.status is TransferJobStatus.PAUSED
        assert second.job.version == first.job.version

    asyncio.run(scenario())


def test_requeueing_failed_job_is_a_manual_retry() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        scheduler = RecordingScheduler()
        service = TransferQueueService(
            repository,
            scheduler=scheduler,
            id_factory=lambda: "transfer_1",
        )
        await service.submit(_submit_request())
        await service.update_job(
            TransferUpdateRequest.model_validate(
                {"jobId": "transfer_1", "status": "failed", "error": "quota"}
            )
        )

        response = await service.update_job(
            TransferUpdateRequest.model_validate({"jobId": "transfer_1", "status": "queued"})
        )

        assert response.job.status is TransferJobStatus.QUEUED
        assert response.job.retry_count == 0
        assert response.job.error is None
        assert response.job.completed_at is None
        assert scheduler.wakes == 2

    asyncio.run(scenario())


def test_status_overview_and_history_for_user() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        ids = _ids("transfer_1", "transfer_2")
        service = TransferQueueService(repository, id_factory=lambda: next(ids))
        await service.submit(_submit_request())
        await service.submit(_submit_request())
        await service.update_job(
            TransferUpdateRequest.model_validate({"jobId": "transfer_2", "status": "completed"})
        )

        overview = await service.get_status_overview("u1")
        history = await service.list_history("u1")

        assert [job.id for job in overview.active_jobs] == ["transfer_1"]
        assert [job.id for job in overview.recent_jobs] == ["transfer_2"]
        assert overview.total_active == 1
        assert overview.total_recent == 1
        assert history.history == []

    asyncio.run(scenario())


def test_save_connection_stores_credentials() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        service = TransferQueueService(repository)

        await service.save_connection(
            ConnectionUpsertRequest.model_validate(
                {
                    "userId": "u1",
                    "serviceId": "google-drive",
                    "provider": "google",
                    "accessToken": "token",
                }
            )
        )

        connection = await repository.get_connection("u1", "google-drive")
        assert connection is not None
        assert connection.access_token == "token"

    asyncio.run(scenario())
