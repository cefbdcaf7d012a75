"""Audit trail of converted invoices."""
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from facturx_batch.domain import UsageEntry


class UsageLog(Protocol):
    def record(self, entry: UsageEntry) -> None: ...

    def list_for_user(self, user_id: str) -> list[UsageEntry]: ...

    def reset(self) -> None: ...


class InMemoryUsageLog:
    def __init__(self) -> None:
        self._entries: list[UsageEntry] = []
        self._lock = threading.Lock()

    def record(self, entry: UsageEntry) -> None:
        stored = replace(entry, metadata=dict(entry.metadata))
        if stored.created_at is None:
            stored.created_at = datetime.now(timezone.utc)
        with self._lock:
            self._entries.append(stored)

    def list_for_user(self, user_id: str) -> list[UsageEntry]:
        with self._lock:
            return [replace(entry) for entry in self._entries if entry.user_id == user_id]

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
