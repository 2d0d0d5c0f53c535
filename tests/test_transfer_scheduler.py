from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from drivebridge.application.services import TransferJobExecutor, TransferScheduler
from drivebridge.domain.entities import FileRef, SourceFile, TransferJob
from drivebridge.domain.errors import TransferJobStoreError
from drivebridge.domain.monitoring_models import TransferProgressEvent
from drivebridge.domain.ports import ConnectionResolver, ProviderHandle, TransferEventPublisher
from drivebridge.domain.transfer_jobs import TransferJobStatus, TransferOutcome
from drivebridge.infrastructure.repositories import InMemoryTransferJobRepository

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _job(job_id: str, **overrides: object) -> TransferJob:
    values: dict[str, object] = {
        "job_id": job_id,
        "user_id": "u1",
        "source_service": "google-drive",
        "destination_service": "onedrive",
        "source_files": [
            SourceFile(id="f1", name="a.txt", size=10),
            SourceFile(id="f2", name="b.txt", size=10),
        ],
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
    }
    values.update(overrides)
    return TransferJob(**values)  # type: ignore[arg-type]


class CountingProviderHandle(ProviderHandle):
    def __init__(self) -> None:
        self.downloads: list[str] = []

    async def download(self, file: SourceFile) -> bytes:
        self.downloads.append(file.id)
        return b"0123456789"

    async def upload(self, data: bytes, name: str, path: str) -> FileRef:
        return FileRef(id=name, name=name, size=len(data))


class StaticConnectionResolver(ConnectionResolver):
    def __init__(self, handle: ProviderHandle) -> None:
        self.handle = handle

    async def resolve(self, user_id: str, service_id: str) -> ProviderHandle:
        return self.handle


class NullEventPublisher(TransferEventPublisher):
    async def publish_progress(self, event: TransferProgressEvent) -> None:
        return None


class RecordingExecutor:
    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.gate = gate
        self.started = asyncio.Event()
        self.executed: list[str] = []

    async def execute(self, job: TransferJob) -> TransferOutcome:
        self.executed.append(job.job_id)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        return TransferOutcome.COMPLETED


class SelectiveFailingExecutor:
    def __init__(self, failing_job_id: str) -> None:
        self.failing_job_id = failing_job_id

    async def execute(self, job: TransferJob) -> TransferOutcome:
        if job.job_id == self.failing_job_id:
            raise TransferJobStoreError("database unavailable")
        return TransferOutcome.COMPLETED


def _real_executor(
    repository: InMemoryTransferJobRepository,
    handle: CountingProviderHandle,
    worker_id: str = "worker-test",
) -> TransferJobExecutor:
    return TransferJobExecutor(
        worker_id=worker_id,
        repository=repository,
        connection_resolver=StaticConnectionResolver(handle),
        event_publisher=NullEventPublisher(),
    )


def test_cycle_dispatches_highest_priority_jobs_up_to_limit() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        for index, priority in enumerate([1, 3, 2, 5]):
            await repository.create(
                _job(
                    f"job-{index}",
                    priority=priority,
                    created_at=BASE_TIME + timedelta(seconds=index),
                )
            )
        executor = RecordingExecutor()
        scheduler = TransferScheduler(repository, executor, max_concurrent_jobs=3)

        report = await scheduler.run_cycle()

        assert report is not None
        assert report.dispatched == ["job-3", "job-1", "job-2"]
        assert sorted(executor.executed) == ["job-1", "job-2", "job-3"]
        assert set(report.outcomes.values()) == {TransferOutcome.COMPLETED}

    asyncio.run(scenario())


def test_overlapping_cycle_is_skipped() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1"))
        gate = asyncio.Event()
        executor = RecordingExecutor(gate=gate)
        scheduler = TransferScheduler(repository, executor)

        first = asyncio.create_task(scheduler.run_cycle())
        await asyncio.wait_for(executor.started.wait(), timeout=1.0)

        assert await scheduler.run_cycle() is None

        gate.set()
        report = await first
        assert report is not None
        assert report.dispatched == ["job-1"]

    asyncio.run(scenario())


def test_executor_errors_are_reported_without_stopping_the_cycle() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-ok", priority=2))
        await repository.create(_job("job-broken", priority=1))
        scheduler = TransferScheduler(repository, SelectiveFailingExecutor("job-broken"))

        report = await scheduler.run_cycle()

        assert report is not None
        assert report.outcomes == {"job-ok": TransferOutcome.COMPLETED}
        assert report.errors == {"job-broken": "database unavailable"}

    asyncio.run(scenario())


def test_stale_processing_jobs_are_requeued_and_dispatched() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(
            _job(
                "job-stale",
                status=TransferJobStatus.PROCESSING,
                claim_owner="dead-worker",
                updated_at=datetime.now(tz=UTC) - timedelta(hours=1),
            )
        )
        executor = RecordingExecutor()
        scheduler = TransferScheduler(repository, executor, stale_after_seconds=60)

        report = await scheduler.run_cycle()

        assert report is not None
        assert report.requeued == ["job-stale"]
        assert report.dispatched == ["job-stale"]

    asyncio.run(scenario())


def test_two_schedulers_never_run_the_same_job_twice() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        await repository.create(_job("job-1"))
        source_a = CountingProviderHandle()
        source_b = CountingProviderHandle()
        scheduler_a = TransferScheduler(repository, _real_executor(repository, source_a, "a"))
        scheduler_b = TransferScheduler(repository, _real_executor(repository, source_b, "b"))

        reports = await asyncio.gather(scheduler_a.run_cycle(), scheduler_b.run_cycle())

        outcomes = [
            outcome
            for report in reports
            if report is not None
            for outcome in report.outcomes.values()
        ]
        assert outcomes.count(TransferOutcome.COMPLETED) == 1
        assert len(source_a.downloads) + len(source_b.downloads) == 2
        job = await repository.get("job-1")
        assert job.status is TransferJobStatus.COMPLETED

    asyncio.run(scenario())


def test_running_scheduler_processes_woken_jobs_until_stopped() -> None:
    async def scenario() -> None:
        repository = InMemoryTransferJobRepository()
        scheduler = TransferScheduler(
            repository,
            _real_executor(repository, CountingProviderHandle()),
            poll_interval_seconds=30.0,
        )

        async with scheduler:
            assert scheduler.running is True
            await repository.create(_job("job-1"))
            scheduler.wake()
            for _ in range(200):
                job = await repository.get("job-1")
                if job.status is TransferJobStatus.COMPLETED:
                    break
                await asyncio.sleep(0.01)

        assert scheduler.running is False
        job = await repository.get("job-1")
        assert job.status is TransferJobStatus.COMPLETED

    asyncio.run(scenario())
