"""Periodic dispatcher for queued transfer jobs."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import timedelta
from types import TracebackType
from typing import Protocol

from drivebridge.domain.entities import TransferJob, utc_now
from drivebridge.domain.ports import TransferJobRepository
from drivebridge.domain.transfer_jobs import TransferJobOrder, TransferJobStatus, TransferOutcome

logger = logging.getLogger(__name__)

_DEFAULT_POLL_SECONDS = 5.0
_DEFAULT_MAX_CONCURRENT_JOBS = 3
_DEFAULT_STALE_AFTER_SECONDS = 120.0


class _TransferJobRunner(Protocol):
    """Subset of executor behavior used by the scheduler."""

    async def execute(self, job: TransferJob) -> TransferOutcome:
        """Run one queued job."""


@dataclass(slots=True)
class SchedulerCycleReport:
    """What one polling cycle did."""

    requeued: list[str] = field(default_factory=list)
    dispatched: list[str] = field(default_factory=list)
    outcomes: dict[str, TransferOutcome] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


class TransferScheduler:
    """Owns the polling loop that drives queued jobs through the executor.

    One instance runs at most one cycle at a time. Use `start()`/`stop()` or
    `async with scheduler:` to bound its lifetime.
    """

    def __init__(
        self,
        repository: TransferJobRepository,
        executor: _TransferJobRunner,
        poll_interval_seconds: float = _DEFAULT_POLL_SECONDS,
        max_concurrent_jobs: int = _DEFAULT_MAX_CONCURRENT_JOBS,
        stale_after_seconds: float = _DEFAULT_STALE_AFTER_SECONDS,
    ) -> None:
        self._repository = repository
        self._executor = executor
        self._poll_interval_seconds = max(poll_interval_seconds, 0.05)
        self._max_concurrent_jobs = max(max_concurrent_jobs, 1)
        self._stale_after = timedelta(seconds=max(stale_after_seconds, 0.0))
        self._cycle_lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._wake_event = asyncio.Event()

    @property
    def running(self) -> bool:
        task = self._task
        return task is not None and not task.done()

    async def start(self) -> None:
        """Start the polling loop if it is not running yet."""

        async with self._lifecycle_lock:
            if self.running:
                return
            self._stopping.clear()
            self._wake_event.set()
            self._task = asyncio.create_task(
                self._run_loop(),
                name="transfer-scheduler-loop",
            )
            logger.info(
                "Transfer scheduler started (interval %.1fs, up to %s jobs per cycle).",
                self._poll_interval_seconds,
                self._max_concurrent_jobs,
            )

    async def stop(self) -> None:
        """Stop the polling loop and wait for it to exit."""

        async with self._lifecycle_lock:
            task = self._task
            if task is None:
                return
            self._task = None
            self._stopping.set()
            self._wake_event.set()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            logger.info("Transfer scheduler stopped.")

    async def __aenter__(self) -> TransferScheduler:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.stop()

    def wake(self) -> None:
        """Run the next cycle now instead of waiting for the interval."""

        self._wake_event.set()

    async def run_cycle(self) -> SchedulerCycleReport | None:
        """Run one polling cycle; `None` when a cycle is already in flight."""

        if self._cycle_lock.locked():
            logger.debug("Skipping transfer scheduler cycle: previous cycle still running.")
            return None
        async with self._cycle_lock:
            return await self._run_cycle_unlocked()

    async def _run_cycle_unlocked(self) -> SchedulerCycleReport:
        report = SchedulerCycleReport()
        try:
            report.requeued = await self._repository.requeue_stale(
                stale_before=utc_now() - self._stale_after,
                limit=self._max_concurrent_jobs,
            )
        except Exception:
            logger.exception("Re-queueing stale transfer jobs failed.")
        if report.requeued:
            logger.info(
                "Recovered stale transfer jobs without heartbeat: %s",
                ", ".join(report.requeued),
            )

        jobs = await self._repository.query(
            {TransferJobStatus.QUEUED},
            order=TransferJobOrder.DISPATCH,
            limit=self._max_concurrent_jobs,
        )
        if not jobs:
            return report

        report.dispatched = [job.job_id for job in jobs]
        results = await asyncio.gather(
            *(self._executor.execute(job) for job in jobs),
            return_exceptions=True,
        )
        for job, result in zip(jobs, results, strict=True):
            if isinstance(result, TransferOutcome):
                report.outcomes[job.job_id] = result
                continue
            if not isinstance(result, Exception):
                raise result
            report.errors[job.job_id] = str(result) or result.__class__.__name__
            logger.error(
                "Dispatching transfer job '%s' failed: %s",
                job.job_id,
                result,
                exc_info=result,
            )
        return report

    async def _run_loop(self) -> None:
        while not self._stopping.is_set():
            self._wake_event.clear()
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Transfer scheduler cycle failed.")

            try:
                await asyncio.wait_for(
                    self._wake_event.wait(),
                    timeout=self._poll_interval_seconds,
                )
            except TimeoutError:
                pass


__all__ = ["SchedulerCycleReport", "TransferScheduler"]
