"""PostgreSQL repository implementation for transfer jobs."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Collection, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from drivebridge.domain.entities import (
    CloudConnection,
    SourceFile,
    TransferHistoryEntry,
    TransferJob,
    utc_now,
)
from drivebridge.domain.errors import (
    DuplicateTransferJobError,
    TransferJobConflictError,
    TransferJobNotFoundError,
    TransferJobStoreError,
)
from drivebridge.domain.job_transitions import stale_requeue_patch
from drivebridge.domain.ports import (
    ConnectionRepository,
    TransferHistoryRepository,
    TransferJobRepository,
)
from drivebridge.domain.transfer_jobs import TransferJobOrder, TransferJobPatch, TransferJobStatus

_SELECT_COLUMNS = """
    job_id,
    user_id,
    source_service,
    destination_service,
    source_files,
    destination_path,
    status,
    progress,
    created_at,
    started_at,
    completed_at,
    error,
    retry_count,
    max_retries,
    priority,
    updated_at,
    version,
    claim_owner,
    current_file_index,
    transferred_bytes
"""

_ORDER_BY = {
    TransferJobOrder.DISPATCH: "priority DESC, created_at ASC, job_id ASC",
    TransferJobOrder.NEWEST_FIRST: "created_at DESC, job_id DESC",
    TransferJobOrder.RECENTLY_FINISHED: "completed_at DESC NULLS LAST, job_id DESC",
}


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (asyncpg.PostgresError, OSError) as exc:
        raise TransferJobStoreError(f"{operation} failed: {exc}") from exc


class PostgresTransferJobRepository(
    TransferJobRepository,
    TransferHistoryRepository,
    ConnectionRepository,
):
    """Transfer job repository backed by PostgreSQL."""

    def __init__(
        self,
        dsn: str,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
    ) -> None:
        self._dsn = dsn
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def create(self, job: TransferJob) -> None:
        """Insert primary row and user-scoped copy in one transaction."""

        pool = await self._get_pool()
        with _store_errors(f"Creating transfer job '{job.job_id}'"):
            async with pool.acquire() as connection:
                async with connection.transaction():
                    try:
                        await connection.execute(
                            f"""
                            INSERT INTO transfer_jobs ({_SELECT_COLUMNS})
                            VALUES (
                                $1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $10,
                                $11, $12, $13, $14, $15, $16, $17, $18, $19, $20
                            )
                            """,
                            *self._row_values(job),
                        )
                    except asyncpg.UniqueViolationError as exc:
                        raise DuplicateTransferJobError(
                            f"Transfer job '{job.job_id}' already exists."
                        ) from exc
                    await self._sync_user_copy(connection, job)

    async def get(self, job_id: str) -> TransferJob:
        """Return by job id."""

        pool = await self._get_pool()
        with _store_errors(f"Loading transfer job '{job_id}'"):
            row = await pool.fetchrow(
                f"SELECT {_SELECT_COLUMNS} FROM transfer_jobs WHERE job_id = $1",
                job_id,
            )
        if row is None:
            raise TransferJobNotFoundError(f"Transfer job '{job_id}' not found.")
        return self._to_entity(row)

    async def update(
        self,
        job_id: str,
        patch: TransferJobPatch,
        *,
        expected_status: TransferJobStatus | None = None,
        expected_claim_owner: str | None = None,
    ) -> TransferJob:
        """Merge fields under a row lock and sync the user-scoped copy."""

        pool = await self._get_pool()
        with _store_errors(f"Updating transfer job '{job_id}'"):
            async with pool.acquire() as connection:
                async with connection.transaction():
                    row = await connection.fetchrow(
                        f"SELECT {_SELECT_COLUMNS} FROM transfer_jobs "
                        "WHERE job_id = $1 FOR UPDATE",
                        job_id,
                    )
                    if row is None:
                        raise TransferJobNotFoundError(f"Transfer job '{job_id}' not found.")
                    job = self._to_entity(row)
                    if expected_status is not None and job.status is not expected_status:
                        raise TransferJobConflictError(
                            f"Transfer job '{job_id}' is '{job.status}', "
                            f"expected '{expected_status}'."
                        )
                    if (
                        expected_claim_owner is not None
                        and job.claim_owner != expected_claim_owner
                    ):
                        raise TransferJobConflictError(
                            f"Transfer job '{job_id}' is no longer claimed by "
                            f"'{expected_claim_owner}'."
                        )
                    if not patch.apply_to(job):
                        return job
                    job.version += 1
                    job.updated_at = utc_now()
                    await self._write_mutable_fields(connection, job)
                    await self._sync_user_copy(connection, job)
                    return job

    async def query(
        self,
        statuses: Collection[TransferJobStatus],
        *,
        user_id: str | None = None,
        order: TransferJobOrder = TransferJobOrder.DISPATCH,
        limit: int | None = None,
    ) -> list[TransferJob]:
        """Return a point-in-time snapshot of matching jobs."""

        status_values = sorted(status.value for status in statuses)
        if not status_values:
            return []
        row_limit = None if limit is None else max(limit, 0)
        pool = await self._get_pool()
        with _store_errors("Querying transfer jobs"):
            if user_id is None:
                rows = await pool.fetch(
                    f"""
                    SELECT {_SELECT_COLUMNS}
                    FROM transfer_jobs
                    WHERE status = ANY($1::text[])
                    ORDER BY {_ORDER_BY[order]}
                    LIMIT $2
                    """,
                    status_values,
                    row_limit,
                )
                return [self._to_entity(row) for row in rows]

            rows = await pool.fetch(
                f"""
                SELECT payload
                FROM user_transfer_jobs
                WHERE user_id = $1
                  AND status = ANY($2::text[])
                ORDER BY {_ORDER_BY[order]}
                LIMIT $3
                """,
                user_id,
                status_values,
                row_limit,
            )
        return [self._from_payload(self._decode_dict(row["payload"])) for row in rows]

    async def claim(
        self,
        job_id: str,
        *,
        claim_owner: str,
        expected_version: int,
        reset_progress: bool = True,
    ) -> TransferJob | None:
        """Conditional `queued -> processing` guarded by status and version."""

        pool = await self._get_pool()
        with _store_errors(f"Claiming transfer job '{job_id}'"):
            async with pool.acquire() as connection:
                async with connection.transaction():
                    row = await connection.fetchrow(
                        f"""
                        UPDATE transfer_jobs
                        SET
                            status = 'processing',
                            claim_owner = $2,
                            started_at = COALESCE(started_at, NOW()),
                            progress = CASE WHEN $4 THEN 0 ELSE progress END,
                            current_file_index = CASE WHEN $4 THEN 0 ELSE current_file_index END,
                            transferred_bytes = CASE WHEN $4 THEN 0 ELSE transferred_bytes END,
                            version = version + 1,
                            updated_at = NOW()
                        WHERE job_id = $1
                          AND status = 'queued'
                          AND version = $3
                        RETURNING {_SELECT_COLUMNS}
                        """,
                        job_id,
                        claim_owner,
                        expected_version,
                        reset_progress,
                    )
                    if row is None:
                        exists = await connection.fetchval(
                            "SELECT 1 FROM transfer_jobs WHERE job_id = $1",
                            job_id,
                        )
                        if exists is None:
                            raise TransferJobNotFoundError(f"Transfer job '{job_id}' not found.")
                        return None
                    job = self._to_entity(row)
                    await self._sync_user_copy(connection, job)
                    return job

    async def touch(self, job_id: str, *, claim_owner: str) -> bool:
        """Refresh heartbeat if ownership still matches."""

        pool = await self._get_pool()
        with _store_errors(f"Refreshing heartbeat of transfer job '{job_id}'"):
            result = await pool.execute(
                """
                UPDATE transfer_jobs
                SET updated_at = NOW()
                WHERE job_id = $1
                  AND status = 'processing'
                  AND claim_owner = $2
                """,
                job_id,
                claim_owner,
            )
        return result.endswith(" 1")

    async def requeue_stale(self, *, stale_before: datetime, limit: int) -> list[str]:
        """Re-queue processing jobs whose heartbeat is older than `stale_before`.

        Each recovery counts as one attempt, so a job past its retry bound is
        failed instead.
        """

        if limit <= 0:
            return []

        pool = await self._get_pool()
        with _store_errors("Re-queueing stale transfer jobs"):
            async with pool.acquire() as connection:
                async with connection.transaction():
                    rows = await connection.fetch(
                        f"""
                        SELECT {_SELECT_COLUMNS}
                        FROM transfer_jobs
                        WHERE status = 'processing'
                          AND updated_at < $1
                        ORDER BY updated_at ASC, job_id ASC
                        LIMIT $2
                        FOR UPDATE SKIP LOCKED
                        """,
                        stale_before,
                        limit,
                    )
                    jobs = [self._to_entity(row) for row in rows]
                    for job in jobs:
                        now = utc_now()
                        stale_requeue_patch(job, now=now).apply_to(job)
                        job.version += 1
                        job.updated_at = now
                        await self._write_mutable_fields(connection, job)
                        await self._sync_user_copy(connection, job)
        return [job.job_id for job in jobs]

    async def append_history(self, entry: TransferHistoryEntry) -> None:
        """Insert one transfer history row."""

        pool = await self._get_pool()
        with _store_errors(f"Recording history for transfer job '{entry.job_id}'"):
            await pool.execute(
                """
                INSERT INTO transfer_history (
                    id, user_id, job_id, recorded_at, from_service, to_service,
                    file_names, total_bytes, cost_cents, charged, status
                ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11)
                ON CONFLICT (id) DO NOTHING
                """,
                entry.id,
                entry.user_id,
                entry.job_id,
                entry.timestamp,
                entry.from_service,
                entry.to_service,
                json.dumps(entry.file_names),
                entry.total_bytes,
                entry.cost_cents,
                entry.charged,
                entry.status.value,
            )

    async def list_history(self, user_id: str, *, limit: int = 50) -> list[TransferHistoryEntry]:
        """Return newest history rows first."""

        pool = await self._get_pool()
        with _store_errors(f"Listing transfer history of user '{user_id}'"):
            rows = await pool.fetch(
                """
                SELECT
                    id, user_id, job_id, recorded_at, from_service, to_service,
                    file_names, total_bytes, cost_cents, charged, status
                FROM transfer_history
                WHERE user_id = $1
                ORDER BY recorded_at DESC, id DESC
                LIMIT $2
                """,
                user_id,
                max(limit, 0),
            )
        return [
            TransferHistoryEntry(
                id=str(row["id"]),
                user_id=str(row["user_id"]),
                job_id=str(row["job_id"]),
                timestamp=row["recorded_at"],
                from_service=str(row["from_service"]),
                to_service=str(row["to_service"]),
                file_names=[str(name) for name in self._decode_list(row["file_names"])],
                total_bytes=int(row["total_bytes"]),
                cost_cents=int(row["cost_cents"]),
                charged=bool(row["charged"]),
                status=TransferJobStatus(str(row["status"])),
            )
            for row in rows
        ]

    async def save_connection(self, connection: CloudConnection) -> None:
        """Create or replace one stored connection."""

        pool = await self._get_pool()
        with _store_errors(f"Saving connection '{connection.service_id}'"):
            await pool.execute(
                """
                INSERT INTO cloud_connections (
                    user_id, service_id, provider, access_token,
                    refresh_token, expires_at, display_name, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, NOW())
                ON CONFLICT (user_id, service_id) DO UPDATE SET
                    provider = EXCLUDED.provider,
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    expires_at = EXCLUDED.expires_at,
                    display_name = EXCLUDED.display_name,
                    updated_at = NOW()
                """,
                connection.user_id,
                connection.service_id,
                connection.provider,
                connection.access_token,
                connection.refresh_token,
                connection.expires_at,
                connection.display_name,
            )

    async def get_connection(self, user_id: str, service_id: str) -> CloudConnection | None:
        """Return one stored connection."""

        pool = await self._get_pool()
        with _store_errors(f"Loading connection '{service_id}'"):
            row = await pool.fetchrow(
                """
                SELECT
                    user_id, service_id, provider, access_token,
                    refresh_token, expires_at, display_name
                FROM cloud_connections
                WHERE user_id = $1 AND service_id = $2
                """,
                user_id,
                service_id,
            )
        if row is None:
            return None
        return CloudConnection(
            user_id=str(row["user_id"]),
            service_id=str(row["service_id"]),
            provider=str(row["provider"]),
            access_token=str(row["access_token"]),
            refresh_token=self._as_optional_str(row["refresh_token"]),
            expires_at=row["expires_at"],
            display_name=self._as_optional_str(row["display_name"]),
        )

    async def close(self) -> None:
        """Close the pool if it was initialized."""

        pool = self._pool
        self._pool = None
        if pool is not None:
            await pool.close()

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                with _store_errors("Connecting to PostgreSQL"):
                    pool = await asyncpg.create_pool(
                        dsn=self._dsn,
                        min_size=self._min_pool_size,
                        max_size=self._max_pool_size,
                    )
                    await self._ensure_schema(pool)
                self._pool = pool
        assert self._pool is not None
        return self._pool

    async def _ensure_schema(self, pool: asyncpg.Pool) -> None:
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS transfer_jobs (
                job_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                source_service TEXT NOT NULL,
                destination_service TEXT NOT NULL,
                source_files JSONB NOT NULL DEFAULT '[]'::jsonb,
                destination_path TEXT NOT NULL DEFAULT 'root',
                status TEXT NOT NULL,
                progress INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                error TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                max_retries INTEGER NOT NULL DEFAULT 3,
                priority INTEGER NOT NULL DEFAULT 1,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                version BIGINT NOT NULL DEFAULT 0,
                claim_owner TEXT,
                current_file_index INTEGER NOT NULL DEFAULT 0,
                transferred_bytes BIGINT NOT NULL DEFAULT 0
            );
            CREATE INDEX IF NOT EXISTS idx_transfer_jobs_dispatch
                ON transfer_jobs (priority DESC, created_at ASC)
                WHERE status = 'queued';
            CREATE INDEX IF NOT EXISTS idx_transfer_jobs_heartbeat
                ON transfer_jobs (updated_at)
                WHERE status = 'processing';
            """
        )
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS user_transfer_jobs (
                user_id TEXT NOT NULL,
                job_id TEXT NOT NULL REFERENCES transfer_jobs(job_id) ON DELETE CASCADE,
                status TEXT NOT NULL,
                priority INTEGER NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                payload JSONB NOT NULL,
                PRIMARY KEY (user_id, job_id)
            );
            CREATE INDEX IF NOT EXISTS idx_user_transfer_jobs_status
                ON user_transfer_jobs (user_id, status, created_at DESC);
            """
        )
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS transfer_history (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                recorded_at TIMESTAMPTZ NOT NULL,
                from_service TEXT NOT NULL,
                to_service TEXT NOT NULL,
                file_names JSONB NOT NULL DEFAULT '[]'::jsonb,
                total_bytes BIGINT NOT NULL,
                cost_cents INTEGER NOT NULL DEFAULT 0,
                charged BOOLEAN NOT NULL DEFAULT TRUE,
                status TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_transfer_history_user
                ON transfer_history (user_id, recorded_at DESC);
            CREATE TABLE IF NOT EXISTS cloud_connections (
                user_id TEXT NOT NULL,
                service_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                access_token TEXT NOT NULL,
                refresh_token TEXT,
                expires_at TIMESTAMPTZ,
                display_name TEXT,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                PRIMARY KEY (user_id, service_id)
            );
            """
        )

    async def _write_mutable_fields(
        self,
        connection: asyncpg.Connection,
        job: TransferJob,
    ) -> None:
        await connection.execute(
            """
            UPDATE transfer_jobs
            SET
                status = $2,
                progress = $3,
                started_at = $4,
                completed_at = $5,
                error = $6,
                retry_count = $7,
                updated_at = $8,
                version = $9,
                claim_owner = $10,
                current_file_index = $11,
                transferred_bytes = $12
            WHERE job_id = $1
            """,
            job.job_id,
            job.status.value,
            job.progress,
            job.started_at,
            job.completed_at,
            job.error,
            job.retry_count,
            job.updated_at,
            job.version,
            job.claim_owner,
            job.current_file_index,
            job.transferred_bytes,
        )

    async def _sync_user_copy(self, connection: asyncpg.Connection, job: TransferJob) -> None:
        await connection.execute(
            """
            INSERT INTO user_transfer_jobs (
                user_id, job_id, status, priority, created_at, completed_at, payload
            ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
            ON CONFLICT (user_id, job_id) DO UPDATE SET
                status = EXCLUDED.status,
                priority = EXCLUDED.priority,
                completed_at = EXCLUDED.completed_at,
                payload = EXCLUDED.payload
            """,
            job.user_id,
            job.job_id,
            job.status.value,
            job.priority,
            job.created_at,
            job.completed_at,
            json.dumps(self._to_payload(job)),
        )

    def _row_values(self, job: TransferJob) -> tuple[Any, ...]:
        return (
            job.job_id,
            job.user_id,
            job.source_service,
            job.destination_service,
            json.dumps(self._source_files_payload(job.source_files)),
            job.destination_path,
            job.status.value,
            job.progress,
            job.created_at,
            job.started_at,
            job.completed_at,
            job.error,
            job.retry_count,
            job.max_retries,
            job.priority,
            job.updated_at,
            job.version,
            job.claim_owner,
            job.current_file_index,
            job.transferred_bytes,
        )

    def _to_entity(self, row: asyncpg.Record) -> TransferJob:
        return TransferJob(
            job_id=str(row["job_id"]),
            user_id=str(row["user_id"]),
            source_service=str(row["source_service"]),
            destination_service=str(row["destination_service"]),
            source_files=self._source_files(self._decode_list(row["source_files"])),
            destination_path=str(row["destination_path"]),
            status=TransferJobStatus(str(row["status"])),
            progress=int(row["progress"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error=self._as_optional_str(row["error"]),
            retry_count=int(row["retry_count"]),
            max_retries=int(row["max_retries"]),
            priority=int(row["priority"]),
            updated_at=row["updated_at"],
            version=int(row["version"]),
            claim_owner=self._as_optional_str(row["claim_owner"]),
            current_file_index=int(row["current_file_index"]),
            transferred_bytes=int(row["transferred_bytes"]),
        )

    def _to_payload(self, job: TransferJob) -> dict[str, Any]:
        return {
            "jobId": job.job_id,
            "userId": job.user_id,
            "sourceService": job.source_service,
            "destinationService": job.destination_service,
            "sourceFiles": self._source_files_payload(job.source_files),
            "destinationPath": job.destination_path,
            "status": job.status.value,
            "progress": job.progress,
            "createdAt": job.created_at.isoformat(),
            "startedAt": self._isoformat(job.started_at),
            "completedAt": self._isoformat(job.completed_at),
            "error": job.error,
            "retryCount": job.retry_count,
            "maxRetries": job.max_retries,
            "priority": job.priority,
            "updatedAt": job.updated_at.isoformat(),
            "version": job.version,
            "claimOwner": job.claim_owner,
            "currentFileIndex": job.current_file_index,
            "transferredBytes": job.transferred_bytes,
        }

    def _from_payload(self, payload: dict[str, Any]) -> TransferJob:
        return TransferJob(
            job_id=str(payload["jobId"]),
            user_id=str(payload["userId"]),
            source_service=str(payload["sourceService"]),
            destination_service=str(payload["destinationService"]),
            source_files=self._source_files(payload.get("sourceFiles") or []),
            destination_path=str(payload.get("destinationPath") or "root"),
            status=TransferJobStatus(str(payload["status"])),
            progress=int(payload.get("progress") or 0),
            created_at=datetime.fromisoformat(str(payload["createdAt"])),
            started_at=self._parse_datetime(payload.get("startedAt")),
            completed_at=self._parse_datetime(payload.get("completedAt")),
            error=self._as_optional_str(payload.get("error")),
            retry_count=int(payload.get("retryCount") or 0),
            max_retries=int(payload.get("maxRetries") or 0),
            priority=int(payload.get("priority") or 0),
            updated_at=datetime.fromisoformat(str(payload["updatedAt"])),
            version=int(payload.get("version") or 0),
            claim_owner=self._as_optional_str(payload.get("claimOwner")),
            current_file_index=int(payload.get("currentFileIndex") or 0),
            transferred_bytes=int(payload.get("transferredBytes") or 0),
        )

    def _source_files_payload(self, files: list[SourceFile]) -> list[dict[str, Any]]:
        return [{"id": item.id, "name": item.name, "size": item.size} for item in files]

    def _source_files(self, raw: list[Any]) -> list[SourceFile]:
        files: list[SourceFile] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            size = item.get("size")
            files.append(
                SourceFile(
                    id=str(item["id"]),
                    name=str(item["name"]),
                    size=None if size is None else int(size),
                )
            )
        return files

    def _isoformat(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        return value.isoformat()

    def _parse_datetime(self, value: object) -> datetime | None:
        if value is None:
            return None
        return datetime.fromisoformat(str(value))

    def _decode_json_field(self, value: object) -> object:
        if isinstance(value, str):
            return json.loads(value)
        return value

    def _decode_list(self, value: object) -> list[Any]:
        decoded = self._decode_json_field(value)
        if isinstance(decoded, list):
            return decoded
        return []

    def _decode_dict(self, value: object) -> dict[str, Any]:
        decoded = self._decode_json_field(value)
        if isinstance(decoded, dict):
            return decoded
        return {}

    def _as_optional_str(self, value: object) -> str | None:
        if value is None:
            return None
        return str(value)


__all__ = ["PostgresTransferJobRepository"]
