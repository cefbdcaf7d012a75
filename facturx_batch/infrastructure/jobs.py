"""Infrastructure layer for batch job persistence."""
from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Protocol

from facturx_batch.domain import Job, JobStatus


class JobRepository(Protocol):
    """Persistence contract for batch jobs."""

    def create(self, job: Job) -> Job: ...

    def get(self, public_id: str) -> Job | None: ...

    def save(self, job: Job, *, expected_status: JobStatus | None = None) -> bool: ...

    def list_for_user(self, user_id: str, *, offset: int, limit: int) -> tuple[list[Job], int]: ...

    def list_completed_before(self, cutoff: datetime) -> list[Job]: ...

    def reset(self) -> None: ...


class InMemoryJobRepository:
    """Simple in-memory repository for fast iteration and tests.

    Jobs are copied on the way in and out so callers never share mutable
    state with the store; ``save`` with ``expected_status`` only writes when
    the stored status still matches.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._sequence = 0
        self._lock = threading.Lock()

    def create(self, job: Job) -> Job:
        with self._lock:
            self._sequence += 1
            stored = copy.deepcopy(job)
            stored.id = self._sequence
            if stored.created_at is None:
                stored.created_at = datetime.now(timezone.utc)
            self._jobs[stored.public_id] = stored
            return copy.deepcopy(stored)

    def get(self, public_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(public_id)
            return copy.deepcopy(job) if job else None

    def save(self, job: Job, *, expected_status: JobStatus | None = None) -> bool:
        with self._lock:
            current = self._jobs.get(job.public_id)
            if current is None:
                return False
            if expected_status is not None and current.status != expected_status:
                return False
            self._jobs[job.public_id] = copy.deepcopy(job)
            return True

    def list_for_user(self, user_id: str, *, offset: int, limit: int) -> tuple[list[Job], int]:
        with self._lock:
            owned = [job for job in self._jobs.values() if job.user_id == user_id]
        owned.sort(key=lambda job: (job.created_at, job.id or 0), reverse=True)
        page = owned[offset : offset + limit]
        return [copy.deepcopy(job) for job in page], len(owned)

    def list_completed_before(self, cutoff: datetime) -> list[Job]:
        with self._lock:
            return [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if job.status == JobStatus.COMPLETED
                and job.completed_at is not None
                and job.completed_at < cutoff
            ]

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()
            self._sequence = 0
