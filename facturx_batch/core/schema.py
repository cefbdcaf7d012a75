from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, constr, field_validator

from facturx_batch.core.config import CURRENCY_LABEL
from facturx_batch.domain import Job


class InvoiceMetadataRecord(BaseModel):
    """One manifest row after alias resolution.

    Every field is optional here: a row missing a required value is still
    produced and only fails when the document is composed.
    """

    row_number: int | None = None
    filename: str | None = None
    invoice_number: str | None = None
    invoice_date: str | None = None
    seller_name: str | None = None
    seller_siret: str | None = None
    seller_vat_number: str | None = None
    seller_street: str | None = None
    seller_zip_code: str | None = None
    seller_city: str | None = None
    seller_country_code: str = "FR"
    buyer_name: str | None = None
    buyer_siret: str | None = None
    buyer_vat_number: str | None = None
    buyer_street: str | None = None
    buyer_zip_code: str | None = None
    buyer_city: str | None = None
    buyer_country_code: str = "FR"
    currency_code: str = "EUR"
    total_ht: str | None = None
    total_tva: str | None = None
    total_ttc: str | None = None
    payment_terms: str | None = None
    payment_due_date: str | None = None

    @property
    def label(self) -> str:
        if self.filename:
            return self.filename
        if self.row_number is not None:
            return f"row {self.row_number}"
        return "?"


class ItemError(BaseModel):
    filename: str
    error: str


class BatchResult(BaseModel):
    success: bool
    total_processed: int = 0
    total_failed: int = 0
    output_archive_path: str | None = None
    output_size_bytes: int | None = None
    errors: list[ItemError] = Field(default_factory=list)


class SubmissionReceipt(BaseModel):
    message: str
    job_id: str
    status: str
    estimated_items: int
    status_url: str


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class JobStatusView(BaseModel):
    """Public status document returned to polling clients."""

    job_id: str
    status: str
    total_items: int
    processed_count: int
    failed_count: int
    progress_percent: int
    total_cost: str
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    download_available: bool = False
    download_expires_at: str | None = None
    error_message: str | None = None
    item_errors: list[ItemError] | None = None

    @classmethod
    def from_job(cls, job: Job, now: datetime) -> "JobStatusView":
        return cls(
            job_id=job.public_id,
            status=job.status.value,
            total_items=job.total_items,
            processed_count=job.processed_count,
            failed_count=job.failed_count,
            progress_percent=job.progress_percent,
            total_cost=f"{job.total_cost_cents / 100:.2f} {CURRENCY_LABEL}",
            created_at=_iso(job.created_at),
            started_at=_iso(job.started_at),
            completed_at=_iso(job.completed_at),
            download_available=job.is_download_valid(now),
            download_expires_at=_iso(job.download_expires_at),
            error_message=job.error_message,
            item_errors=[ItemError(**item) for item in job.item_errors] if job.item_errors else None,
        )


class JobListMeta(BaseModel):
    total: int
    per_page: int
    current_page: int
    last_page: int


class JobListView(BaseModel):
    data: list[JobStatusView]
    meta: JobListMeta


# ----------------------------------------------------------------------
# single invoice request
# ----------------------------------------------------------------------
_DATE = r"^\d{4}-\d{2}-\d{2}$"
_AMOUNT = r"^\d+(\.\d{1,2})?$"
_SIRET = r"^\d{14}$"
_VAT = r"^[A-Z]{2}[A-Z0-9]{2,13}$"


class Address(BaseModel):
    street: str | None = None
    zip_code: str | None = None
    city: str | None = None
    country_code: constr(min_length=2, max_length=2) = "FR"

    @field_validator("country_code")
    @classmethod
    def upper_country(cls, value: str) -> str:
        return value.upper()


class InvoicePayload(BaseModel):
    """Fields accepted by the single-invoice endpoint."""

    invoice_number: constr(min_length=1)
    invoice_date: constr(pattern=_DATE)
    seller_name: constr(min_length=1)
    seller_siret: constr(pattern=_SIRET)
    seller_vat_number: constr(pattern=_VAT) | None = None
    seller_address: Address = Field(default_factory=Address)
    buyer_name: constr(min_length=1)
    buyer_siret: constr(pattern=_SIRET) | None = None
    buyer_vat_number: constr(pattern=_VAT) | None = None
    buyer_address: Address = Field(default_factory=Address)
    currency_code: constr(min_length=3, max_length=3) = "EUR"
    total_ht: constr(pattern=_AMOUNT)
    total_tva: constr(pattern=_AMOUNT)
    total_ttc: constr(pattern=_AMOUNT)
    payment_terms: str | None = None
    payment_due_date: constr(pattern=_DATE) | None = None

    @field_validator("currency_code")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()

    def to_record(self, filename: str | None = None) -> InvoiceMetadataRecord:
        return InvoiceMetadataRecord(
            filename=filename,
            invoice_number=self.invoice_number,
            invoice_date=self.invoice_date,
            seller_name=self.seller_name,
            seller_siret=self.seller_siret,
            seller_vat_number=self.seller_vat_number,
            seller_street=self.seller_address.street,
            seller_zip_code=self.seller_address.zip_code,
            seller_city=self.seller_address.city,
            seller_country_code=self.seller_address.country_code,
            buyer_name=self.buyer_name,
            buyer_siret=self.buyer_siret,
            buyer_vat_number=self.buyer_vat_number,
            buyer_street=self.buyer_address.street,
            buyer_zip_code=self.buyer_address.zip_code,
            buyer_city=self.buyer_address.city,
            buyer_country_code=self.buyer_address.country_code,
            currency_code=self.currency_code,
            total_ht=self.total_ht,
            total_tva=self.total_tva,
            total_ttc=self.total_ttc,
            payment_terms=self.payment_terms,
            payment_due_date=self.payment_due_date,
        )
