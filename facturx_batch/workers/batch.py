from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from facturx_batch.core import config, workspaces
from facturx_batch.core.archives import extract_archive, locate_entry, pack_directory
from facturx_batch.core.errors import BatchError, CompositionError, ManifestError
from facturx_batch.core.manifest import parse_manifest
from facturx_batch.core.schema import BatchResult, InvoiceMetadataRecord, ItemError
from facturx_batch.core.validation import PDF_MAGIC
from facturx_batch.domain import Job, JobStatus, UsageEntry
from facturx_batch.infrastructure import (
    BillingLedger,
    DocumentComposer,
    JobRepository,
    UsageLog,
    get_composer,
)

logger = logging.getLogger(__name__)

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def output_filename(invoice_number: str) -> str:
    return f"facturx-{_UNSAFE_NAME.sub('_', invoice_number.strip())}.pdf"


def download_url(public_id: str) -> str:
    return f"/api/invoices/batch/{public_id}/download"


def _describe(exc: Exception) -> str:
    if isinstance(exc, BatchError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class BatchOrchestrator:
    """Drives one batch job from ``pending`` to a terminal status.

    The orchestrator is the only writer of processing state for a job.  State
    transitions are optimistic: a transition only lands while the stored job
    still has the status the orchestrator last saw, so a concurrent cancel
    always wins.
    """

    def __init__(
        self,
        jobs: JobRepository,
        ledger: BillingLedger,
        usage: UsageLog,
        composer: Callable[[], DocumentComposer] = get_composer,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._jobs = jobs
        self._ledger = ledger
        self._usage = usage
        self._composer = composer
        self._clock = clock

    async def run(self, public_id: str) -> BatchResult | None:
        """Background entry point for a submitted job."""

        job = self._jobs.get(public_id)
        if job is None:
            logger.warning("Batch %s not found; nothing to process", public_id)
            return None
        return await asyncio.to_thread(self.process, job)

    def process(self, job: Job) -> BatchResult:
        public_id = job.public_id
        workspaces.ensure_job_root(public_id)

        stored = self._jobs.get(public_id)
        if stored is None or stored.status != JobStatus.PENDING:
            return self._abandon(public_id, stored.status if stored else None)

        stored.start_processing(self._clock())
        if not self._jobs.save(stored, expected_status=JobStatus.PENDING):
            current = self._jobs.get(public_id)
            return self._abandon(public_id, current.status if current else None)

        logger.info("Batch %s started for user %s", public_id, stored.user_id)
        try:
            return self._execute(stored)
        except Exception as exc:
            logger.exception("Batch %s failed", public_id)
            return self._fail(stored, _describe(exc))

    # ------------------------------------------------------------------
    # pipeline
    # ------------------------------------------------------------------
    def _execute(self, job: Job) -> BatchResult:
        public_id = job.public_id
        input_root = workspaces.input_dir(public_id)
        output_root = workspaces.output_dir(public_id)

        extract_archive(Path(job.input_archive_path), input_root)
        records = list(parse_manifest(Path(job.input_manifest_path), limit=config.max_batch_items()))
        if not records:
            raise ManifestError("The manifest contains no invoices")

        unit_price = config.unit_price_cents()
        if len(records) != job.total_items:
            logger.info("Batch %s: correcting item count %d -> %d", public_id, job.total_items, len(records))
            job.correct_total(len(records), unit_price)
            self._save_progress(job)

        composer = self._composer()
        every = config.progress_every()
        written: set[str] = set()
        errors: list[ItemError] = []
        processed = failed = 0

        for record in records:
            try:
                self._convert(record, input_root, output_root, composer, written)
            except Exception as exc:
                failed += 1
                errors.append(ItemError(filename=record.label, error=_describe(exc)))
                logger.warning("Batch %s: %s failed: %s", public_id, record.label, _describe(exc))
                job.update_progress(processed, failed)
                if failed % every == 0:
                    self._save_progress(job)
            else:
                processed += 1
                job.update_progress(processed, failed)
                if processed % every == 0:
                    self._save_progress(job)

        archive_path = workspaces.output_archive_path(public_id)
        size = pack_directory(output_root, archive_path)

        now = self._clock()
        item_errors = [error.model_dump() for error in errors]
        if processed == 0:
            job.mark_failed("All invoices failed", now, item_errors)
        else:
            self._ledger.settle(job.user_id, public_id, processed, unit_price_cents=unit_price, now=now)
            job.mark_completed(
                archive_path=str(archive_path),
                size_bytes=size,
                download_url=download_url(public_id),
                now=now,
                ttl=timedelta(hours=config.download_ttl_hours()),
                item_errors=item_errors,
            )

        if not self._jobs.save(job, expected_status=JobStatus.PROCESSING):
            self._ledger.void(job.user_id, public_id)
            return self._abandon(public_id, JobStatus.CANCELLED, processed=processed, failed=failed)

        self._record_usage(job, processed, failed, unit_price)
        self._release_inputs(public_id)
        if job.status == JobStatus.FAILED:
            workspaces.purge_job(public_id)
            logger.info("Batch %s failed: all %d invoices rejected", public_id, failed)
            return BatchResult(success=False, total_processed=0, total_failed=failed, errors=errors)

        logger.info("Batch %s completed: %d processed, %d failed", public_id, processed, failed)
        return BatchResult(
            success=True,
            total_processed=processed,
            total_failed=failed,
            output_archive_path=str(archive_path),
            output_size_bytes=size,
            errors=errors,
        )

    def _convert(
        self,
        record: InvoiceMetadataRecord,
        input_root: Path,
        output_root: Path,
        composer: DocumentComposer,
        written: set[str],
    ) -> None:
        if not record.filename:
            raise CompositionError("Missing filename")
        source = locate_entry(input_root, record.filename)
        if source is None:
            raise CompositionError(f"PDF not found in archive: {record.filename}")
        pdf_bytes = source.read_bytes()
        if not pdf_bytes.startswith(PDF_MAGIC):
            raise CompositionError("File is not a valid PDF")

        composed = composer.compose(record, pdf_bytes)
        name = output_filename(record.invoice_number)
        if name in written:
            raise CompositionError(f"Duplicate output file name: {name}")
        (output_root / name).write_bytes(composed)
        written.add(name)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _save_progress(self, job: Job) -> None:
        if not self._jobs.save(job, expected_status=JobStatus.PROCESSING):
            logger.info("Batch %s is no longer processing; progress not saved", job.public_id)

    def _record_usage(self, job: Job, processed: int, failed: int, unit_price: int) -> None:
        if job.status == JobStatus.FAILED:
            status = "failed"
        elif failed:
            status = "partial"
        else:
            status = "success"
        self._usage.record(
            UsageEntry(
                user_id=job.user_id,
                kind="batch",
                invoice_count=processed,
                cost_cents=processed * unit_price,
                status=status,
                api_key_id=job.api_key_id,
                batch_job_id=job.public_id,
                ip_address=job.ip_address,
                user_agent=job.user_agent,
                metadata={"total": job.total_items, "processed": processed, "failed": failed},
                created_at=self._clock(),
            )
        )

    def _release_inputs(self, public_id: str) -> None:
        root = workspaces.job_root(public_id)
        workspaces.remove_tree(root / "input")
        workspaces.remove_tree(root / "output")
        workspaces.remove_tree(root / "upload")

    def _abandon(
        self,
        public_id: str,
        status: JobStatus | None,
        *,
        processed: int = 0,
        failed: int = 0,
    ) -> BatchResult:
        label = status.value if status else "missing"
        logger.info("Batch %s is %s; releasing its files", public_id, label)
        workspaces.purge_job(public_id)
        return BatchResult(
            success=False,
            total_processed=processed,
            total_failed=failed,
            errors=[ItemError(filename="*", error=f"Batch is {label}")],
        )

    def _fail(self, job: Job, message: str) -> BatchResult:
        processed, failed = job.processed_count, job.failed_count
        job.mark_failed(message, self._clock())
        if self._jobs.save(job, expected_status=JobStatus.PROCESSING):
            workspaces.purge_job(job.public_id)
        else:
            current = self._jobs.get(job.public_id)
            logger.info("Batch %s changed status while failing; keeping it", job.public_id)
            if current is not None and current.status == JobStatus.COMPLETED:
                return self._completed_result(current)
            workspaces.purge_job(job.public_id)
        return BatchResult(
            success=False,
            total_processed=processed,
            total_failed=failed,
            errors=[ItemError(filename="*", error=message)],
        )

    @staticmethod
    def _completed_result(job: Job) -> BatchResult:
        return BatchResult(
            success=True,
            total_processed=job.processed_count,
            total_failed=job.failed_count,
            output_archive_path=job.output_archive_path,
            output_size_bytes=job.output_size_bytes,
            errors=[ItemError(**item) for item in job.item_errors or []],
        )
