"""Execute one claimed transfer job file by file."""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import suppress
from uuid import uuid4

from drivebridge.domain.entities import TransferHistoryEntry, TransferJob, utc_now
from drivebridge.domain.errors import (
    TransferConnectionError,
    TransferJobConflictError,
    TransferJobStoreError,
)
from drivebridge.domain.job_transitions import (
    completion_patch,
    file_progress_patch,
    is_dispatchable,
    retry_or_fail_patch,
    terminal_failure_patch,
)
from drivebridge.domain.monitoring_models import TransferProgressEvent
from drivebridge.domain.ports import (
    ConnectionResolver,
    ProviderHandle,
    TransferEventPublisher,
    TransferHistoryRepository,
    TransferJobRepository,
    WalletLedger,
)
from drivebridge.domain.transfer_jobs import (
    TransferJobPatch,
    TransferJobStatus,
    TransferOutcome,
)

logger = logging.getLogger(__name__)

BYTES_PER_GIB = 1024**3

_DEFAULT_HEARTBEAT_SECONDS = 10.0


class TransferJobExecutor:
    """Claims a queued job, copies its files in order and records the outcome."""

    def __init__(
        self,
        worker_id: str,
        repository: TransferJobRepository,
        connection_resolver: ConnectionResolver,
        event_publisher: TransferEventPublisher,
        history_repository: TransferHistoryRepository | None = None,
        wallet_ledger: WalletLedger | None = None,
        price_cents_per_gib: int = 0,
        heartbeat_seconds: float = _DEFAULT_HEARTBEAT_SECONDS,
        resume_from_checkpoint: bool = False,
    ) -> None:
        self._repository = repository
        self._connection_resolver = connection_resolver
        self._event_publisher = event_publisher
        if history_repository is not None:
            self._history_repository = history_repository
        elif isinstance(repository, TransferHistoryRepository):
            self._history_repository = repository
        else:
            self._history_repository = None
        self._wallet_ledger = wallet_ledger
        self._price_cents_per_gib = max(price_cents_per_gib, 0)
        self._heartbeat_seconds = max(heartbeat_seconds, 0.05)
        self._resume_from_checkpoint = resume_from_checkpoint
        self._claim_owner = f"{worker_id}:{uuid4()}"

    @property
    def claim_owner(self) -> str:
        return self._claim_owner

    async def execute(self, job: TransferJob) -> TransferOutcome:
        """Run `job` to completion, retry scheduling or terminal failure.

        Store failures propagate to the caller; every other error is turned into
        a state transition on the job.
        """

        if not is_dispatchable(job):
            return TransferOutcome.SKIPPED

        claimed = await self._repository.claim(
            job.job_id,
            claim_owner=self._claim_owner,
            expected_version=job.version,
            reset_progress=not self._resume_from_checkpoint,
        )
        if claimed is None:
            logger.info("Transfer job '%s' was claimed by another worker.", job.job_id)
            return TransferOutcome.SKIPPED

        await self._publish(claimed)
        heartbeat = asyncio.create_task(
            self._run_heartbeat(claimed.job_id),
            name=f"transfer-job-heartbeat-{claimed.job_id}",
        )
        try:
            return await self._run_claimed(claimed)
        except TransferJobStoreError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Transfer job '%s' failed unexpectedly.", claimed.job_id)
            return await self._handle_failure(claimed, exc)
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat

    async def _run_claimed(self, job: TransferJob) -> TransferOutcome:
        try:
            source = await self._connection_resolver.resolve(job.user_id, job.source_service)
            destination = await self._connection_resolver.resolve(
                job.user_id,
                job.destination_service,
            )
        except TransferConnectionError as exc:
            logger.warning(
                "Transfer job '%s' cannot resolve its connections: %s",
                job.job_id,
                exc,
            )
            return await self._fail_terminally(job, str(exc))

        return await self._copy_files(job, source, destination)

    async def _copy_files(
        self,
        job: TransferJob,
        source: ProviderHandle,
        destination: ProviderHandle,
    ) -> TransferOutcome:
        current = job
        completed_files = job.current_file_index
        transferred_bytes = job.transferred_bytes

        for index in range(job.current_file_index, job.file_count):
            source_file = job.source_files[index]
            try:
                data = await source.download(source_file)
                await destination.upload(data, source_file.name, job.destination_path)
            except TransferConnectionError as exc:
                logger.warning(
                    "Transfer job '%s' lost access while copying '%s': %s",
                    job.job_id,
                    source_file.name,
                    exc,
                )
                return await self._fail_terminally(current, str(exc))
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Transfer job '%s' failed on file '%s' (attempt %s of %s): %s",
                    job.job_id,
                    source_file.name,
                    job.retry_count + 1,
                    job.max_retries + 1,
                    exc,
                )
                return await self._handle_failure(current, exc)

            completed_files = index + 1
            transferred_bytes += len(data)
            if completed_files == job.file_count:
                break

            updated = await self._write(
                current,
                file_progress_patch(
                    current,
                    completed_files=completed_files,
                    transferred_bytes=transferred_bytes,
                ),
            )
            if updated is None:
                return TransferOutcome.ABANDONED
            current = updated
            await self._publish(current, current_file_name=source_file.name)

        completed = await self._write(
            current,
            completion_patch(current, transferred_bytes=transferred_bytes, now=utc_now()),
        )
        if completed is None:
            return TransferOutcome.ABANDONED

        cost_cents = self._transfer_cost_cents(transferred_bytes)
        charged = await self._charge(completed, cost_cents)
        await self._record_history(completed, cost_cents=cost_cents, charged=charged)
        await self._publish(completed)
        logger.info(
            "Transfer job '%s' completed: %s files, %s bytes.",
            completed.job_id,
            completed.file_count,
            transferred_bytes,
        )
        return TransferOutcome.COMPLETED

    async def _handle_failure(self, job: TransferJob, exc: Exception) -> TransferOutcome:
        message = str(exc).strip() or exc.__class__.__name__
        patch = retry_or_fail_patch(
            job,
            message,
            now=utc_now(),
            keep_checkpoint=self._resume_from_checkpoint,
        )
        updated = await self._write(job, patch)
        if updated is None:
            return TransferOutcome.ABANDONED
        await self._publish(updated)
        if updated.status is TransferJobStatus.FAILED:
            logger.warning(
                "Transfer job '%s' failed after %s retries: %s",
                updated.job_id,
                updated.retry_count,
                message,
            )
            return TransferOutcome.FAILED
        logger.info(
            "Transfer job '%s' re-queued (%s).",
            updated.job_id,
            updated.error,
        )
        return TransferOutcome.RETRY_SCHEDULED

    async def _fail_terminally(self, job: TransferJob, message: str) -> TransferOutcome:
        updated = await self._write(job, terminal_failure_patch(message, now=utc_now()))
        if updated is None:
            return TransferOutcome.ABANDONED
        await self._publish(updated)
        return TransferOutcome.FAILED

    async def _write(self, job: TransferJob, patch: TransferJobPatch) -> TransferJob | None:
        """Apply `patch` only while this executor still owns the processing job."""

        try:
            return await self._repository.update(
                job.job_id,
                patch,
                expected_status=TransferJobStatus.PROCESSING,
                expected_claim_owner=self._claim_owner,
            )
        except TransferJobConflictError as exc:
            logger.warning("Abandoning transfer job '%s': %s", job.job_id, exc)
            return None

    def _transfer_cost_cents(self, transferred_bytes: int) -> int:
        if self._price_cents_per_gib <= 0 or transferred_bytes <= 0:
            return 0
        return math.ceil(transferred_bytes * self._price_cents_per_gib / BYTES_PER_GIB)

    async def _charge(self, job: TransferJob, cost_cents: int) -> bool:
        if cost_cents <= 0 or self._wallet_ledger is None:
            return True
        description = (
            f"Transfer {job.job_id}: {job.file_count} files "
            f"from {job.source_service} to {job.destination_service}"
        )
        try:
            accepted = await self._wallet_ledger.debit(job.user_id, cost_cents, description)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Wallet debit for transfer job '%s' failed: %s",
                job.job_id,
                exc,
            )
            return False
        if not accepted:
            logger.warning(
                "Wallet debit of %s cents for transfer job '%s' was declined.",
                cost_cents,
                job.job_id,
            )
        return accepted

    async def _record_history(self, job: TransferJob, *, cost_cents: int, charged: bool) -> None:
        repository = self._history_repository
        if repository is None:
            return
        entry = TransferHistoryEntry(
            id=f"history_{job.job_id}",
            user_id=job.user_id,
            job_id=job.job_id,
            timestamp=job.completed_at or utc_now(),
            from_service=job.source_service,
            to_service=job.destination_service,
            file_names=[item.name for item in job.source_files],
            total_bytes=job.transferred_bytes,
            cost_cents=cost_cents,
            charged=charged,
        )
        try:
            await repository.append_history(entry)
        except TransferJobStoreError:
            logger.exception("Recording history for transfer job '%s' failed.", job.job_id)

    async def _publish(self, job: TransferJob, current_file_name: str | None = None) -> None:
        event = TransferProgressEvent.from_job(job, current_file_name=current_file_name)
        try:
            await self._event_publisher.publish_progress(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Publishing progress for transfer job '%s' failed: %s",
                job.job_id,
                exc,
            )

    async def _run_heartbeat(self, job_id: str) -> None:
        """Keep `updated_at` fresh so the scheduler does not treat the job as stale."""

        try:
            while True:
                await asyncio.sleep(self._heartbeat_seconds)
                if not await self._repository.touch(job_id, claim_owner=self._claim_owner):
                    return
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Transfer job heartbeat failed for '%s'.", job_id)


__all__ = ["BYTES_PER_GIB", "TransferJobExecutor"]
