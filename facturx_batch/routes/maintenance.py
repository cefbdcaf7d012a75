from __future__ import annotations

from fastapi import APIRouter, Request

from facturx_batch.application import get_batch_service

router = APIRouter(tags=["maintenance"])


@router.post("/maintenance/sweep")
async def sweep_expired_batches() -> dict:
    """Delete output archives past the retention window."""
    service = get_batch_service()
    return {"swept": service.sweep_expired()}


@router.get("/health")
async def health(request: Request) -> dict:
    return {"status": "ok", "version": request.app.version}
