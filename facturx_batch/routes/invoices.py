from __future__ import annotations

import json

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from pydantic import ValidationError

from facturx_batch.application import CallerContext, get_batch_service
from facturx_batch.core.errors import BatchError, SubmissionError
from facturx_batch.core.schema import InvoicePayload
from facturx_batch.routes.context import get_caller

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _parse_invoice(raw: str | None) -> InvoicePayload:
    if not raw:
        raise SubmissionError("MISSING_INVOICE", "Invoice data is required")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise SubmissionError("INVALID_INVOICE", "Invoice data must be valid JSON") from None
    if not isinstance(data, dict):
        raise SubmissionError("INVALID_INVOICE", "Invoice data must be a JSON object")
    try:
        return InvoicePayload.model_validate(data)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise BatchError("VALIDATION_ERROR", "Invalid invoice data", {"errors": errors}, status_code=422) from None


@router.post("/facturx")
async def convert_invoice(
    pdf: UploadFile | None = File(default=None),
    invoice: str | None = Form(default=None),
    caller: CallerContext = Depends(get_caller),
) -> Response:
    """Convert one PDF into a Factur-X document synchronously."""
    try:
        payload = _parse_invoice(invoice)
        content = await pdf.read() if pdf is not None else b""
        filename = pdf.filename if pdf is not None else None
    finally:
        if pdf is not None:
            await pdf.close()

    service = get_batch_service()
    output_name, document = service.compose_single(caller, payload, filename, content)
    return Response(
        content=document,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{output_name}"'},
    )
