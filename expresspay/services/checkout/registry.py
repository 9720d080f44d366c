"""In-process registry of pending checkouts.

Records live only in memory and are keyed by the provider token. The registry
bounds itself two ways: a lazy eviction sweep of stale records whenever it is
full at registration time, and a cap on pending records per origin address.
Every public method runs under one lock.
"""

import threading
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from expresspay.common.logging import logger
from expresspay.common.metrics import active_transactions, rate_limited_total, registry_evictions_total
from expresspay.nvp.errors import RateLimitExceededError, RegistrationConflictError, TransactionNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionRecord(BaseModel):
    """One pending checkout owned by the registry."""

    token: str
    amount: str
    currency: str
    origin: str
    created_at: datetime


class TransactionRegistry:
    """Token -> pending checkout map with per-origin accounting."""

    def __init__(
        self,
        max_active: int,
        max_lifetime: timedelta,
        max_per_origin: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.max_active = max_active
        self.max_lifetime = max_lifetime
        self.max_per_origin = max_per_origin
        self.clock = clock
        self._records: dict[str, TransactionRecord] = {}
        # origin -> number of live records with that origin
        self._origin_counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def _remove(self, token: str) -> TransactionRecord:
        record = self._records.pop(token)
        self._origin_counts[record.origin] -= 1
        if self._origin_counts[record.origin] <= 0:
            del self._origin_counts[record.origin]
        return record

    def _evict_stale(self, now: datetime) -> int:
        stale = [token for token, record in self._records.items() if now - record.created_at > self.max_lifetime]
        for token in stale:
            self._remove(token)
        if stale:
            registry_evictions_total.inc(len(stale))
            logger.info("evicted stale transactions count=%s", len(stale))
        return len(stale)

    def register(self, token: str, amount: str, currency: str, origin: str) -> TransactionRecord:
        """Store a new pending checkout, or raise a RegistryError."""

        with self._lock:
            if token in self._records:
                raise RegistrationConflictError(token)
            now = self.clock()
            if len(self._records) >= self.max_active:
                self._evict_stale(now)
                if len(self._records) >= self.max_active:
                    logger.warning("registry still full after sweep size=%s", len(self._records))
            if self._origin_counts[origin] >= self.max_per_origin:
                rate_limited_total.inc()
                logger.warning("rate limit hit origin=%s limit=%s", origin, self.max_per_origin)
                raise RateLimitExceededError(origin, self.max_per_origin)
            self._origin_counts[origin] += 1
            record = TransactionRecord(token=token, amount=amount, currency=currency, origin=origin, created_at=now)
            self._records[token] = record
            active_transactions.set(len(self._records))
            logger.info("transaction registered token=%s origin=%s amount=%s %s", token, origin, amount, currency)
            return record

    def unregister(self, token: str) -> TransactionRecord:
        with self._lock:
            if token not in self._records:
                raise TransactionNotFoundError(token)
            record = self._remove(token)
            active_transactions.set(len(self._records))
            logger.info("transaction unregistered token=%s", token)
            return record

    def discard(self, token: str) -> TransactionRecord | None:
        """Remove a record if it is still live; None when already swept or cleared."""

        with self._lock:
            if token not in self._records:
                return None
            record = self._remove(token)
            active_transactions.set(len(self._records))
            logger.info("transaction unregistered token=%s", token)
            return record

    def find(self, token: str, required: bool = True) -> TransactionRecord | None:
        """Look up a pending checkout; absent tokens raise only when `required`."""

        with self._lock:
            record = self._records.get(token)
        if record is None and required:
            raise TransactionNotFoundError(token)
        return record

    def tokens(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def origin_count(self, origin: str) -> int:
        with self._lock:
            return self._origin_counts[origin]

    def clear(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
            self._origin_counts.clear()
            active_transactions.set(0)
            logger.info("registry cleared count=%s", count)
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
