"""Stored provider connection routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from drivebridge.api.dependencies import get_transfer_queue_service
from drivebridge.application.services import TransferQueueService
from drivebridge.domain.errors import TransferJobValidationError
from drivebridge.domain.queue_models import ConnectionUpsertRequest

router = APIRouter(prefix="/connections", tags=["connections"])


@router.put("", status_code=204, response_class=Response)
async def save_connection(
    request: ConnectionUpsertRequest,
    service: TransferQueueService = Depends(get_transfer_queue_service),
) -> Response:
    """Store the credentials a user granted for one provider."""

    try:
        await service.save_connection(request)
    except TransferJobValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


__all__ = ["router"]
