"""Exception taxonomy shared by the pipeline and the HTTP layer."""
from __future__ import annotations

from typing import Any


class BatchError(Exception):
    """Base error carrying a machine-readable code and an HTTP status."""

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(message)


class Unauthenticated(BatchError):
    def __init__(self, message: str = "Caller identity required") -> None:
        super().__init__("UNAUTHENTICATED", message, status_code=401)


class SubmissionError(BatchError):
    """Rejected upload; raised before any job is created."""

    def __init__(self, code: str, message: str, status_code: int = 400) -> None:
        super().__init__(code, message, status_code=status_code)


class ExtractionError(BatchError):
    def __init__(self, message: str) -> None:
        super().__init__("EXTRACTION_FAILED", message, status_code=422)


class ManifestError(BatchError):
    def __init__(self, message: str) -> None:
        super().__init__("INVALID_MANIFEST", message, status_code=422)


class ManifestTooLarge(ManifestError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"The manifest contains more than {limit} invoices. Maximum allowed: {limit}")
        self.code = "MANIFEST_TOO_LARGE"
        self.details = {"limit": limit}


class PackagingError(BatchError):
    def __init__(self, message: str) -> None:
        super().__init__("PACKAGING_FAILED", message, status_code=500)


class CompositionError(BatchError):
    """A single document could not be turned into a Factur-X PDF."""

    def __init__(self, message: str) -> None:
        super().__init__("COMPOSITION_FAILED", message, status_code=422)


class JobNotFound(BatchError):
    def __init__(self, job_id: str) -> None:
        super().__init__("JOB_NOT_FOUND", f"Batch '{job_id}' not found", status_code=404)


class NotCompleted(BatchError):
    def __init__(self, status: str, progress: int) -> None:
        super().__init__(
            "JOB_NOT_COMPLETED",
            "The batch is not completed yet",
            {"status": status, "progress": progress},
            status_code=409,
        )


class DownloadExpired(BatchError):
    def __init__(self, expired_at: str | None) -> None:
        super().__init__(
            "DOWNLOAD_EXPIRED",
            "The download link has expired",
            {"expired_at": expired_at},
            status_code=410,
        )


class OutputMissing(BatchError):
    def __init__(self) -> None:
        super().__init__("OUTPUT_NOT_FOUND", "Output archive is not available", status_code=404)


class CannotCancel(BatchError):
    def __init__(self, status: str) -> None:
        super().__init__(
            "CANNOT_CANCEL",
            "This batch can no longer be cancelled",
            {"status": status},
            status_code=409,
        )


class InsufficientCredit(BatchError):
    def __init__(self, required_cents: int, available_cents: int) -> None:
        super().__init__(
            "INSUFFICIENT_CREDIT",
            f"Insufficient credit. Required: {required_cents / 100:.2f}, available: {available_cents / 100:.2f}",
            {"required_cents": required_cents, "available_cents": available_cents},
            status_code=402,
        )
