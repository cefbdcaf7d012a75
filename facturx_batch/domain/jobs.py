"""Domain entities for batch conversion jobs and billing."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


def progress_percent(processed: int, total: int) -> int:
    """Share of processed items, rounded half up; an empty batch is at 0%."""

    if total <= 0:
        return 0
    return min(100, int(math.floor(processed * 100 / total + 0.5)))


@dataclass(slots=True)
class Job:
    """One batch submission.

    ``id`` is the storage sequence and is never exposed; clients only ever
    see ``public_id``.
    """

    public_id: str
    user_id: str
    total_items: int
    total_cost_cents: int
    id: int | None = None
    api_key_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    processed_count: int = 0
    failed_count: int = 0
    progress_percent: int = 0
    input_archive_path: str | None = None
    input_manifest_path: str | None = None
    output_archive_path: str | None = None
    output_size_bytes: int | None = None
    download_url: str | None = None
    download_expires_at: datetime | None = None
    error_message: str | None = None
    item_errors: list[dict[str, str]] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def start_processing(self, now: datetime) -> None:
        self.status = JobStatus.PROCESSING
        self.started_at = now

    def correct_total(self, total_items: int, unit_price_cents: int) -> None:
        self.total_items = total_items
        self.total_cost_cents = total_items * unit_price_cents
        self.progress_percent = progress_percent(self.processed_count, total_items)

    def update_progress(self, processed: int, failed: int) -> None:
        self.processed_count = processed
        self.failed_count = failed
        self.progress_percent = progress_percent(processed, self.total_items)

    def mark_completed(
        self,
        *,
        archive_path: str,
        size_bytes: int,
        download_url: str,
        now: datetime,
        ttl: timedelta,
        item_errors: list[dict[str, str]] | None = None,
    ) -> None:
        self.status = JobStatus.COMPLETED
        self.output_archive_path = archive_path
        self.output_size_bytes = size_bytes
        self.download_url = download_url
        self.download_expires_at = now + ttl
        self.completed_at = now
        self.item_errors = item_errors or None

    def mark_failed(
        self,
        message: str,
        now: datetime,
        item_errors: list[dict[str, str]] | None = None,
    ) -> None:
        self.status = JobStatus.FAILED
        self.error_message = message
        self.item_errors = item_errors or None
        self.output_archive_path = None
        self.output_size_bytes = None
        self.download_url = None
        self.download_expires_at = None
        self.completed_at = now

    def cancel(self, now: datetime) -> None:
        self.status = JobStatus.CANCELLED
        self.completed_at = now

    def is_download_valid(self, now: datetime) -> bool:
        if self.status != JobStatus.COMPLETED:
            return False
        if self.download_expires_at is None:
            return False
        return now < self.download_expires_at


@dataclass(slots=True)
class UserAccount:
    """Billing view of a user: plan, prepaid credit and monthly usage."""

    user_id: str
    plan: str = "free"
    credit_balance_cents: int = 0
    invoices_used: int = 0
    subscription_ends_at: datetime | None = None

    def has_active_subscription(self, now: datetime) -> bool:
        if self.plan == "free":
            return False
        if self.subscription_ends_at is None:
            return False
        return self.subscription_ends_at > now


@dataclass(slots=True)
class Settlement:
    user_id: str
    reference: str
    items: int
    amount_cents: int
    charged_at: datetime


@dataclass(slots=True)
class UsageEntry:
    user_id: str
    kind: str
    invoice_count: int
    cost_cents: int
    status: str
    api_key_id: str | None = None
    batch_job_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
