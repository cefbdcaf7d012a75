from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, File, Query, UploadFile
from fastapi.responses import FileResponse

from facturx_batch.application import CallerContext, get_batch_service
from facturx_batch.core.errors import SubmissionError
from facturx_batch.routes.context import get_caller

router = APIRouter(prefix="/invoices/batch", tags=["batch"])


@router.post("", status_code=202)
async def submit_batch(
    background_tasks: BackgroundTasks,
    invoices: UploadFile | None = File(default=None),
    metadata: UploadFile | None = File(default=None),
    caller: CallerContext = Depends(get_caller),
) -> dict:
    """Accept a ZIP of PDFs plus a manifest and queue the conversion."""
    try:
        if invoices is None or not invoices.filename:
            raise SubmissionError("MISSING_ARCHIVE", "A ZIP archive of invoices is required")
        if metadata is None or not metadata.filename:
            raise SubmissionError("MISSING_MANIFEST", "A CSV or Excel metadata file is required")

        service = get_batch_service()
        receipt = service.submit(caller, invoices.filename, invoices.file, metadata.filename, metadata.file)
    finally:
        if invoices is not None:
            await invoices.close()
        if metadata is not None:
            await metadata.close()

    background_tasks.add_task(service.run, receipt.job_id)
    return receipt.model_dump()


@router.get("")
async def list_batches(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    caller: CallerContext = Depends(get_caller),
) -> dict:
    service = get_batch_service()
    return service.list_jobs(caller, page=page, limit=limit).model_dump()


@router.get("/{job_id}")
async def get_batch_status(job_id: str, caller: CallerContext = Depends(get_caller)) -> dict:
    service = get_batch_service()
    return service.get_status(caller, job_id).model_dump()


@router.get("/{job_id}/download")
async def download_batch(job_id: str, caller: CallerContext = Depends(get_caller)) -> FileResponse:
    service = get_batch_service()
    path = service.open_download(caller, job_id)
    return FileResponse(path, media_type="application/zip", filename=f"facturx-{job_id}.zip")


@router.delete("/{job_id}")
async def cancel_batch(job_id: str, caller: CallerContext = Depends(get_caller)) -> dict:
    service = get_batch_service()
    view = service.cancel(caller, job_id)
    return {"message": "Batch cancelled", "job_id": view.job_id, "status": view.status}
