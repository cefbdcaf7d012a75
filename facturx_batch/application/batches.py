"""Application service layer for batch conversion use cases."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO, Callable
from uuid import uuid4

from facturx_batch.core import config, workspaces
from facturx_batch.core.errors import (
    CannotCancel,
    CompositionError,
    DownloadExpired,
    JobNotFound,
    NotCompleted,
    OutputMissing,
    SubmissionError,
)
from facturx_batch.core.schema import (
    BatchResult,
    InvoicePayload,
    JobListMeta,
    JobListView,
    JobStatusView,
    SubmissionReceipt,
)
from facturx_batch.core.validation import (
    estimate_items,
    validate_archive,
    validate_manifest,
    validate_pdf_bytes,
)
from facturx_batch.domain import Job, JobStatus, UsageEntry
from facturx_batch.infrastructure import (
    BillingLedger,
    InMemoryBillingLedger,
    InMemoryJobRepository,
    InMemoryUsageLog,
    JobRepository,
    UsageLog,
    get_composer,
    reset_composer,
)
from facturx_batch.workers.batch import BatchOrchestrator, output_filename

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CallerContext:
    """Identity of the authenticated caller, resolved upstream."""

    user_id: str
    api_key_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class BatchService:
    """Coordinates batch submissions and the single-invoice path."""

    MAX_PAGE_SIZE = 100

    def __init__(
        self,
        jobs: JobRepository,
        ledger: BillingLedger,
        usage: UsageLog,
        orchestrator: BatchOrchestrator,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._jobs = jobs
        self._ledger = ledger
        self._usage = usage
        self._orchestrator = orchestrator
        self._clock = clock

    @property
    def jobs(self) -> JobRepository:
        return self._jobs

    @property
    def ledger(self) -> BillingLedger:
        return self._ledger

    @property
    def usage(self) -> UsageLog:
        return self._usage

    @property
    def orchestrator(self) -> BatchOrchestrator:
        return self._orchestrator

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------
    def submit(
        self,
        caller: CallerContext,
        archive_name: str | None,
        archive: BinaryIO,
        manifest_name: str | None,
        manifest: BinaryIO,
    ) -> SubmissionReceipt:
        """Store and validate the uploads, then register a ``pending`` job.

        Nothing is persisted when validation fails.
        """

        if not archive_name:
            raise SubmissionError("MISSING_ARCHIVE", "A ZIP archive of invoices is required")
        if not manifest_name:
            raise SubmissionError("MISSING_MANIFEST", "A CSV or Excel metadata file is required")

        public_id = str(uuid4())
        try:
            archive_path = workspaces.save_upload(public_id, archive_name, archive)
            validate_archive(archive_path)
            manifest_path = workspaces.save_upload(public_id, manifest_name, manifest)
            validate_manifest(manifest_path)
        except SubmissionError:
            workspaces.purge_job(public_id)
            raise

        estimated = estimate_items(archive_path.stat().st_size)
        job = Job(
            public_id=public_id,
            user_id=caller.user_id,
            total_items=estimated,
            total_cost_cents=estimated * config.unit_price_cents(),
            api_key_id=caller.api_key_id,
            input_archive_path=str(archive_path),
            input_manifest_path=str(manifest_path),
            ip_address=caller.ip_address,
            user_agent=caller.user_agent,
            created_at=self._clock(),
        )
        self._jobs.create(job)
        logger.info("Batch %s submitted by user %s (~%d invoices)", public_id, caller.user_id, estimated)

        return SubmissionReceipt(
            message="Batch accepted for processing",
            job_id=public_id,
            status=JobStatus.PENDING.value,
            estimated_items=estimated,
            status_url=f"/api/invoices/batch/{public_id}",
        )

    async def run(self, public_id: str) -> BatchResult | None:
        return await self._orchestrator.run(public_id)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def _owned(self, caller: CallerContext, public_id: str) -> Job:
        job = self._jobs.get(public_id)
        if job is None or job.user_id != caller.user_id:
            raise JobNotFound(public_id)
        return job

    def get_status(self, caller: CallerContext, public_id: str) -> JobStatusView:
        return JobStatusView.from_job(self._owned(caller, public_id), self._clock())

    def list_jobs(self, caller: CallerContext, page: int = 1, limit: int = 20) -> JobListView:
        page = max(1, page)
        limit = min(self.MAX_PAGE_SIZE, max(1, limit))
        jobs, total = self._jobs.list_for_user(caller.user_id, offset=(page - 1) * limit, limit=limit)
        now = self._clock()
        return JobListView(
            data=[JobStatusView.from_job(job, now) for job in jobs],
            meta=JobListMeta(
                total=total,
                per_page=limit,
                current_page=page,
                last_page=max(1, math.ceil(total / limit)),
            ),
        )

    def open_download(self, caller: CallerContext, public_id: str) -> Path:
        job = self._owned(caller, public_id)
        if job.status != JobStatus.COMPLETED:
            raise NotCompleted(job.status.value, job.progress_percent)
        if not job.is_download_valid(self._clock()):
            expired_at = job.download_expires_at.isoformat() if job.download_expires_at else None
            raise DownloadExpired(expired_at)
        if not job.output_archive_path:
            raise OutputMissing()
        path = Path(job.output_archive_path)
        if not path.is_file():
            raise OutputMissing()
        return path

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    def cancel(self, caller: CallerContext, public_id: str) -> JobStatusView:
        """Cancel a job that has not reached a terminal status.

        A job picked up in the meantime is cancelled in its new status; the
        orchestrator notices at its next transition.
        """

        while True:
            job = self._owned(caller, public_id)
            if job.is_terminal:
                raise CannotCancel(job.status.value)
            previous = job.status
            now = self._clock()
            job.cancel(now)
            if self._jobs.save(job, expected_status=previous):
                logger.info("Batch %s cancelled by user %s", public_id, caller.user_id)
                return JobStatusView.from_job(job, now)

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete output archives of completed jobs past the retention window."""

        now = now or self._clock()
        cutoff = now - timedelta(hours=config.retention_hours())
        swept = 0
        for job in self._jobs.list_completed_before(cutoff):
            if not job.output_archive_path:
                continue
            archive = Path(job.output_archive_path)
            workspaces.remove_file(archive)
            workspaces.purge_job(job.public_id)
            if archive.exists():
                logger.warning("Batch %s: output archive could not be removed; retrying next sweep", job.public_id)
                continue
            job.output_archive_path = None
            job.download_url = None
            if self._jobs.save(job, expected_status=JobStatus.COMPLETED):
                swept += 1
        if swept:
            logger.info("Swept %d expired batch archive(s)", swept)
        return swept

    def compose_single(
        self,
        caller: CallerContext,
        payload: InvoicePayload,
        pdf_name: str | None,
        pdf_bytes: bytes,
    ) -> tuple[str, bytes]:
        """Convert one PDF synchronously and bill a single invoice."""

        validate_pdf_bytes(pdf_bytes)
        record = payload.to_record(Path(pdf_name).name if pdf_name else None)
        unit_price = config.unit_price_cents()
        try:
            composed = get_composer().compose(record, pdf_bytes)
        except CompositionError as exc:
            self._log_single(caller, record.invoice_number, 0, "failed", error=exc.message)
            raise

        self._ledger.settle(
            caller.user_id,
            f"single:{uuid4()}",
            1,
            unit_price_cents=unit_price,
            now=self._clock(),
        )
        self._log_single(caller, record.invoice_number, unit_price, "success")
        return output_filename(payload.invoice_number), composed

    def _log_single(
        self,
        caller: CallerContext,
        invoice_number: str | None,
        cost_cents: int,
        status: str,
        error: str | None = None,
    ) -> None:
        metadata: dict[str, str] = {}
        if invoice_number:
            metadata["invoice_number"] = invoice_number
        if error:
            metadata["error"] = error
        self._usage.record(
            UsageEntry(
                user_id=caller.user_id,
                kind="single",
                invoice_count=1 if status == "success" else 0,
                cost_cents=cost_cents,
                status=status,
                api_key_id=caller.api_key_id,
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
                metadata=metadata,
                created_at=self._clock(),
            )
        )

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self._jobs.reset()
        self._ledger.reset()
        self._usage.reset()


_jobs = InMemoryJobRepository()
_ledger = InMemoryBillingLedger()
_usage = InMemoryUsageLog()
_service = BatchService(_jobs, _ledger, _usage, BatchOrchestrator(_jobs, _ledger, _usage))


def get_batch_service() -> BatchService:
    """Return the singleton batch service for the process."""

    return _service


def reset_batch_state() -> None:
    """Reset the in-memory stores (used in tests)."""

    _service.reset()
    reset_composer()
