"""Transfer queue routes."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query

from drivebridge.api.dependencies import get_transfer_queue_service
from drivebridge.application.services import TransferQueueService
from drivebridge.domain.errors import (
    TransferJobConflictError,
    TransferJobNotFoundError,
    TransferJobValidationError,
)
from drivebridge.domain.queue_models import (
    TransferHistoryListResponse,
    TransferJobEnvelope,
    TransferJobListResponse,
    TransferStatusOverviewResponse,
    TransferSubmitRequest,
    TransferSubmitResponse,
    TransferUpdateRequest,
    TransferUpdateResponse,
)

router = APIRouter(prefix="/transfers", tags=["transfers"])


def _raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, TransferJobNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TransferJobValidationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, TransferJobConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=500, detail="Unexpected transfer job error")


@router.post("", response_model=TransferSubmitResponse, status_code=201)
async def submit_transfer(
    request: TransferSubmitRequest,
    service: TransferQueueService = Depends(get_transfer_queue_service),
) -> TransferSubmitResponse:
    """Queue a new transfer job."""

    try:
        return await service.submit(request)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("", response_model=TransferJobEnvelope | TransferJobListResponse, status_code=200)
async def get_transfers(
    job_id: str | None = Query(default=None, alias="jobId"),
    user_id: str | None = Query(default=None, alias="userId"),
    service: TransferQueueService = Depends(get_transfer_queue_service),
) -> TransferJobEnvelope | TransferJobListResponse:
    """Return one job by id, or the active jobs of a user."""

    try:
        if job_id:
            return await service.get_job(job_id)
        if user_id:
            return await service.list_active_jobs(user_id)
        raise TransferJobValidationError("Missing jobId or userId")
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.put("", response_model=TransferUpdateResponse, status_code=200)
async def update_transfer(
    request: TransferUpdateRequest,
    service: TransferQueueService = Depends(get_transfer_queue_service),
) -> TransferUpdateResponse:
    """Merge status, progress or error into one job."""

    try:
        return await service.update_job(request)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("/status", response_model=TransferStatusOverviewResponse, status_code=200)
async def get_transfer_status(
    user_id: str = Query(alias="userId", min_length=1),
    service: TransferQueueService = Depends(get_transfer_queue_service),
) -> TransferStatusOverviewResponse:
    """Active and recently finished jobs of one user."""

    try:
        return await service.get_status_overview(user_id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("/history", response_model=TransferHistoryListResponse, status_code=200)
async def get_transfer_history(
    user_id: str = Query(alias="userId", min_length=1),
    service: TransferQueueService = Depends(get_transfer_queue_service),
) -> TransferHistoryListResponse:
    """Completed transfers of one user, newest first."""

    try:
        return await service.list_history(user_id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


__all__ = ["router"]
