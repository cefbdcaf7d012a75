"""Domain layer definitions."""

from .jobs import (
    TERMINAL_STATUSES,
    Job,
    JobStatus,
    Settlement,
    UsageEntry,
    UserAccount,
    progress_percent,
)

__all__ = [
    "Job",
    "JobStatus",
    "Settlement",
    "TERMINAL_STATUSES",
    "UsageEntry",
    "UserAccount",
    "progress_percent",
]
