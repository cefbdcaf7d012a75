"""Per-user usage settlement."""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from facturx_batch.core.errors import InsufficientCredit
from facturx_batch.domain import Settlement, UserAccount

logger = logging.getLogger(__name__)


class BillingLedger(Protocol):
    """Contract for charging users for converted invoices."""

    def settle(
        self,
        user_id: str,
        reference: str,
        items: int,
        *,
        unit_price_cents: int,
        now: datetime,
    ) -> Settlement | None: ...

    def void(self, user_id: str, reference: str) -> bool: ...

    def get_account(self, user_id: str) -> UserAccount | None: ...

    def reset(self) -> None: ...


class InMemoryBillingLedger:
    """Ledger holding accounts in memory.

    Every read-modify-write of an account happens under a lock scoped to that
    user, so concurrent settlements for the same user serialise while other
    users proceed.  A settlement is recorded once per ``(user, reference)``;
    settling the same reference again returns the original record.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, UserAccount] = {}
        self._settlements: dict[tuple[str, str], Settlement] = {}
        self._debited: set[tuple[str, str]] = set()
        self._user_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._user_locks[user_id] = lock
            return lock

    def open_account(
        self,
        user_id: str,
        *,
        plan: str = "free",
        credit_balance_cents: int = 0,
        subscription_ends_at: datetime | None = None,
    ) -> UserAccount:
        account = UserAccount(
            user_id=user_id,
            plan=plan,
            credit_balance_cents=credit_balance_cents,
            subscription_ends_at=subscription_ends_at,
        )
        with self._lock_for(user_id):
            self._accounts[user_id] = account
        return replace(account)

    def get_account(self, user_id: str) -> UserAccount | None:
        with self._lock_for(user_id):
            account = self._accounts.get(user_id)
            return replace(account) if account else None

    def settle(
        self,
        user_id: str,
        reference: str,
        items: int,
        *,
        unit_price_cents: int,
        now: datetime,
    ) -> Settlement | None:
        if items <= 0:
            return None

        with self._lock_for(user_id):
            existing = self._settlements.get((user_id, reference))
            if existing is not None:
                logger.info("Settlement %s for user %s already recorded", reference, user_id)
                return replace(existing)

            account = self._accounts.get(user_id)
            if account is None:
                account = UserAccount(user_id=user_id)
                self._accounts[user_id] = account

            amount = items * unit_price_cents
            if account.plan != "free" and not account.has_active_subscription(now):
                if account.credit_balance_cents < amount:
                    raise InsufficientCredit(amount, account.credit_balance_cents)
                account.credit_balance_cents -= amount
                self._debited.add((user_id, reference))
            account.invoices_used += items

            settlement = Settlement(
                user_id=user_id,
                reference=reference,
                items=items,
                amount_cents=amount,
                charged_at=now,
            )
            self._settlements[(user_id, reference)] = settlement
            logger.info("Charged user %s %d cents for %d invoices (%s)", user_id, amount, items, reference)
            return replace(settlement)

    def void(self, user_id: str, reference: str) -> bool:
        """Reverse a recorded settlement; returns ``False`` when there is none."""

        with self._lock_for(user_id):
            settlement = self._settlements.pop((user_id, reference), None)
            if settlement is None:
                return False
            account = self._accounts.get(user_id)
            if account is not None:
                account.invoices_used = max(0, account.invoices_used - settlement.items)
                if (user_id, reference) in self._debited:
                    account.credit_balance_cents += settlement.amount_cents
            self._debited.discard((user_id, reference))
            logger.info("Voided settlement %s for user %s", reference, user_id)
            return True

    def settlements_for(self, user_id: str) -> list[Settlement]:
        with self._lock_for(user_id):
            return [replace(item) for key, item in self._settlements.items() if key[0] == user_id]

    def reset(self) -> None:
        # Per-user locks are never held while waiting on the guard.
        with self._guard:
            held = list(self._user_locks.values())
            for lock in held:
                lock.acquire()
            try:
                self._accounts.clear()
                self._settlements.clear()
                self._debited.clear()
                self._user_locks.clear()
            finally:
                for lock in held:
                    lock.release()
