from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from drivebridge.domain.entities import (
    CloudConnection,
    SourceFile,
    TransferHistoryEntry,
    TransferJob,
)
from drivebridge.domain.errors import (
    DuplicateTransferJobError,
    TransferJobConflictError,
    TransferJobNotFoundError,
)
from drivebridge.domain.transfer_jobs import (
    ACTIVE_TRANSFER_JOB_STATUSES,
    TransferJobOrder,
    TransferJobPatch,
    TransferJobStatus,
)
from drivebridge.infrastructure.repositories import InMemoryTransferJobRepository

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _job(job_id: str, **overrides: object) -> TransferJob:
    values: dict[str, object] = {
        "job_id": job_id,
        "user_id": "u1",
        "source_service": "google-drive",
        "destination_service": "onedrive",
        "source_files": [SourceFile(id="f1", name="a.txt", size=3)],
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
    }
    values.update(overrides)
    return TransferJob(**values)  # type: ignore[arg-type]


def test_create_rejects_duplicate_ids_and_get_raises_for_unknown() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1"))

        with pytest.raises(DuplicateTransferJobError):
            await repository.create(_job("job-1"))
        with pytest.raises(TransferJobNotFoundError):
            await repository.get("missing")

    asyncio.run(scenario())


def test_returned_jobs_are_detached_copies() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1"))

        loaded = await repository.get("job-1")
        loaded.status = TransferJobStatus.FAILED
        loaded.source_files.append(SourceFile(id="f2", name="b.txt"))

        stored = await repository.get("job-1")
        assert stored.status is TransferJobStatus.QUEUED
        assert stored.file_count == 1

    asyncio.run(scenario())


def test_update_syncs_user_listing_and_is_idempotent() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1"))
        patch = TransferJobPatch(status=TransferJobStatus.PAUSED, error="paused")

        first = await repository.update("job-1", patch)
        second = await repository.update("job-1", patch)

        assert first.version == 1
        assert second.version == 1
        listed = await repository.query(ACTIVE_TRANSFER_JOB_STATUSES, user_id="u1")
        assert [(job.job_id, job.status) for job in listed] == [
            ("job-1", TransferJobStatus.PAUSED)
        ]
        assert listed[0].error == "paused"

    asyncio.run(scenario())


def test_update_enforces_expected_status_and_claim_owner() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1"))
        claimed = await repository.claim("job-1", claim_owner="worker-a", expected_version=0)
        assert claimed is not None

        with pytest.raises(TransferJobConflictError):
            await repository.update(
                "job-1",
                TransferJobPatch(progress=50),
                expected_status=TransferJobStatus.QUEUED,
            )
        with pytest.raises(TransferJobConflictError):
            await repository.update(
                "job-1",
                TransferJobPatch(progress=50),
                expected_status=TransferJobStatus.PROCESSING,
                expected_claim_owner="worker-b",
            )

        updated = await repository.update(
            "job-1",
            TransferJobPatch(progress=50),
            expected_status=TransferJobStatus.PROCESSING,
            expected_claim_owner="worker-a",
        )
        assert updated.progress == 50

    asyncio.run(scenario())


def test_dispatch_order_prefers_priority_then_age() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("old-low", priority=1, created_at=BASE_TIME))
        await repository.create(
            _job("new-high", priority=5, created_at=BASE_TIME + timedelta(minutes=2))
        )
        await repository.create(
            _job("mid-low", priority=1, created_at=BASE_TIME + timedelta(minutes=1))
        )
        await repository.create(
            _job("done", status=TransferJobStatus.COMPLETED, priority=9)
        )

        jobs = await repository.query(
            {TransferJobStatus.QUEUED},
            order=TransferJobOrder.DISPATCH,
            limit=2,
        )

        assert [job.job_id for job in jobs] == ["new-high", "old-low"]

    asyncio.run(scenario())


def test_recently_finished_order_uses_completion_time() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(
            _job(
                "first",
                status=TransferJobStatus.COMPLETED,
                completed_at=BASE_TIME + timedelta(minutes=1),
            )
        )
        await repository.create(
            _job(
                "second",
                status=TransferJobStatus.FAILED,
                completed_at=BASE_TIME + timedelta(minutes=5),
            )
        )

        jobs = await repository.query(
            {TransferJobStatus.COMPLETED, TransferJobStatus.FAILED},
            user_id="u1",
            order=TransferJobOrder.RECENTLY_FINISHED,
        )

        assert [job.job_id for job in jobs] == ["second", "first"]

    asyncio.run(scenario())


def test_claim_is_compare_and_set() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1", progress=40, current_file_index=1))

        results = await asyncio.gather(
            repository.claim("job-1", claim_owner="worker-a", expected_version=0),
            repository.claim("job-1", claim_owner="worker-b", expected_version=0),
        )

        winners = [result for result in results if result is not None]
        assert len(winners) == 1
        winner = winners[0]
        assert winner.status is TransferJobStatus.PROCESSING
        assert winner.started_at is not None
        assert winner.progress == 0
        assert winner.current_file_index == 0

    asyncio.run(scenario())


def test_claim_without_reset_keeps_checkpoint() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(
            _job("job-1", progress=50, current_file_index=2, transferred_bytes=6)
        )

        claimed = await repository.claim(
            "job-1",
            claim_owner="worker-a",
            expected_version=0,
            reset_progress=False,
        )

        assert claimed is not None
        assert claimed.progress == 50
        assert claimed.current_file_index == 2
        assert claimed.transferred_bytes == 6

    asyncio.run(scenario())


def test_claim_rejects_stale_version() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1"))
        await repository.update("job-1", TransferJobPatch(error="note"))

        assert await repository.claim("job-1", claim_owner="w", expected_version=0) is None

    asyncio.run(scenario())


def test_touch_only_refreshes_owned_processing_jobs() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1"))

        assert await repository.touch("job-1", claim_owner="worker-a") is False

        await repository.claim("job-1", claim_owner="worker-a", expected_version=0)
        assert await repository.touch("job-1", claim_owner="worker-b") is False
        assert await repository.touch("job-1", claim_owner="worker-a") is True
        assert await repository.touch("missing", claim_owner="worker-a") is False

    asyncio.run(scenario())


def test_requeue_stale_returns_abandoned_processing_jobs_to_queue() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(
            _job(
                "stale",
                status=TransferJobStatus.PROCESSING,
                claim_owner="dead-worker",
                updated_at=BASE_TIME,
            )
        )
        await repository.create(
            _job(
                "fresh",
                status=TransferJobStatus.PROCESSING,
                claim_owner="live-worker",
                updated_at=BASE_TIME + timedelta(hours=1),
            )
        )

        requeued = await repository.requeue_stale(
            stale_before=BASE_TIME + timedelta(minutes=30),
            limit=10,
        )

        assert requeued == ["stale"]
        stale = await repository.get("stale")
        assert stale.status is TransferJobStatus.QUEUED
        assert stale.claim_owner is None
        assert stale.retry_count == 1
        assert stale.error == "Retry 1/3"
        fresh = await repository.get("fresh")
        assert fresh.status is TransferJobStatus.PROCESSING

    asyncio.run(scenario())


def test_history_and_connections_are_scoped_per_user() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        for index, user_id in enumerate(["u1", "u1", "u2"]):
            await repository.append_history(
                TransferHistoryEntry(
                    id=f"history_{index}",
                    user_id=user_id,
                    job_id=f"job-{index}",
                    timestamp=BASE_TIME + timedelta(minutes=index),
                    from_service="google-drive",
                    to_service="onedrive",
                    file_names=["a.txt"],
                    total_bytes=3,
                )
            )
        await repository.save_connection(
            CloudConnection(
                user_id="u1",
                service_id="google-drive",
                provider="google",
                access_token="token",
            )
        )

        history = await repository.list_history("u1")
        assert [entry.id for entry in history] == ["history_1", "history_0"]
        assert await repository.get_connection("u1", "google-drive") is not None
        assert await repository.get_connection("u2", "google-drive") is None

    asyncio.run(scenario())


def test_requeue_stale_fails_jobs_that_exhausted_their_retries() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(
            _job(
                "crashing",
                status=TransferJobStatus.PROCESSING,
                claim_owner="dead-worker",
                retry_count=3,
                max_retries=3,
                updated_at=BASE_TIME,
            )
        )

        recovered = await repository.requeue_stale(
            stale_before=BASE_TIME + timedelta(minutes=30),
            limit=10,
        )

        assert recovered == ["crashing"]
        job = await repository.get("crashing")
        assert job.status is TransferJobStatus.FAILED
        assert job.retry_count == 3
        assert job.error == "Worker stopped reporting progress"
        assert job.completed_at is not None
        assert job.claim_owner is None

    asyncio.run(scenario())
