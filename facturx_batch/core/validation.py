from __future__ import annotations

import zipfile
from pathlib import Path

from facturx_batch.core import config
from facturx_batch.core.errors import SubmissionError
from facturx_batch.core.manifest import CSV_SUFFIXES, EXCEL_SUFFIXES

PDF_MAGIC = b"%PDF-"


def validate_archive(path: Path) -> None:
    if path.suffix.lower() != ".zip":
        raise SubmissionError("INVALID_ARCHIVE", "Invoices must be uploaded as a .zip archive")
    size = path.stat().st_size
    if size > config.max_archive_bytes():
        raise SubmissionError(
            "ARCHIVE_TOO_LARGE",
            f"Archive exceeds {config.max_archive_bytes() // (1024 * 1024)} MB",
            status_code=413,
        )
    if size == 0 or not zipfile.is_zipfile(path):
        raise SubmissionError("INVALID_ARCHIVE", "Uploaded archive is not a valid ZIP file")


def validate_manifest(path: Path) -> None:
    suffix = path.suffix.lower()
    if suffix not in CSV_SUFFIXES | EXCEL_SUFFIXES:
        raise SubmissionError("INVALID_MANIFEST", "Metadata must be a .csv or .xlsx file")
    size = path.stat().st_size
    if size > config.max_manifest_bytes():
        raise SubmissionError(
            "MANIFEST_TOO_LARGE",
            f"Manifest exceeds {config.max_manifest_bytes() // (1024 * 1024)} MB",
            status_code=413,
        )
    if size == 0:
        raise SubmissionError("INVALID_MANIFEST", "Uploaded manifest is empty")


def validate_pdf_bytes(content: bytes) -> None:
    if not content:
        raise SubmissionError("MISSING_PDF", "A PDF file is required")
    if len(content) > config.max_pdf_bytes():
        raise SubmissionError(
            "PDF_TOO_LARGE",
            f"PDF exceeds {config.max_pdf_bytes() // (1024 * 1024)} MB",
            status_code=413,
        )
    if not content.startswith(PDF_MAGIC):
        raise SubmissionError("INVALID_PDF", "Uploaded file is not a PDF")


def estimate_items(archive_size: int) -> int:
    """Provisional item count derived from the archive size."""

    estimated = archive_size // config.ESTIMATED_BYTES_PER_PDF
    return min(config.max_batch_items(), max(1, estimated))
