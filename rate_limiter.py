"""Per-identity request quota over a fixed window."""

from __future__ import annotations

import logging
import math
import os
import threading
from datetime import UTC, datetime, timedelta

from models import AdmitDecision, RateRecord

DEFAULT_MAX_REQUESTS = 10
DEFAULT_WINDOW_MINUTES = 60

LOGGER = logging.getLogger(__name__)


def limit_from_env() -> int:
    return int(os.getenv("RATE_LIMIT_MAX_REQUESTS", str(DEFAULT_MAX_REQUESTS)))


def window_from_env() -> timedelta:
    return timedelta(minutes=int(os.getenv("RATE_LIMIT_WINDOW_MINUTES", str(DEFAULT_WINDOW_MINUTES))))


class RateLimiter:
    """In-process limiter keyed by verified identity.

    Each identity has its own lock, so evaluating and updating its record is
    atomic while different identities never contend with each other. The
    registry lock is only held long enough to look up or create that lock.

    Records whose window has ended carry no state an absent record would not,
    so they are dropped (with their locks) at most once per window.
    """

    def __init__(self, limit: int | None = None, window: timedelta | None = None) -> None:
        limit = limit if limit is not None else limit_from_env()
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.window = window if window is not None else window_from_env()
        self._records: dict[str, RateRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._next_prune_at: datetime | None = None

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._records)

    def _lock_for(self, identity: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(identity)
            if lock is None:
                lock = threading.Lock()
                self._locks[identity] = lock
            return lock

    def _is_current(self, identity: str, lock: threading.Lock) -> bool:
        with self._registry_lock:
            return self._locks.get(identity) is lock

    def admit(self, identity: str, now: datetime | None = None) -> AdmitDecision:
        now = now or datetime.now(UTC)
        self._prune_expired(now)
        while True:
            lock = self._lock_for(identity)
            with lock:
                # A prune between lookup and acquire retires the lock; fetch the new one.
                if not self._is_current(identity, lock):
                    continue
                return self._admit_locked(identity, now)

    def _admit_locked(self, identity: str, now: datetime) -> AdmitDecision:
        record = self._records.get(identity)
        if record is None:
            record = RateRecord(identity=identity, count=0, window_reset_at=now + self.window)
            with self._registry_lock:
                self._records[identity] = record
        elif now >= record.window_reset_at:
            record.count = 0
            record.window_reset_at = now + self.window

        if record.count >= self.limit:
            retry_after = _minutes_until(record.window_reset_at, now)
            LOGGER.info(
                "Rate limit hit for identity=%s count=%s retry_after_minutes=%s",
                identity,
                record.count,
                retry_after,
            )
            return AdmitDecision(allowed=False, remaining=0, retry_after_minutes=retry_after)

        record.count += 1
        return AdmitDecision(allowed=True, remaining=self.limit - record.count)

    def _prune_expired(self, now: datetime) -> None:
        with self._registry_lock:
            if self._next_prune_at is not None and now < self._next_prune_at:
                return
            self._next_prune_at = now + self.window
            dropped = 0
            for identity, record in list(self._records.items()):
                if now < record.window_reset_at:
                    continue
                lock = self._locks.get(identity)
                # Skip identities being admitted right now.
                if lock is not None and not lock.acquire(blocking=False):
                    continue
                try:
                    if now >= record.window_reset_at:
                        del self._records[identity]
                        self._locks.pop(identity, None)
                        dropped += 1
                finally:
                    if lock is not None:
                        lock.release()
        if dropped:
            LOGGER.debug("Dropped %s expired rate records", dropped)

    def snapshot(self, identity: str) -> RateRecord | None:
        """Copy of the current record, for diagnostics and tests."""
        with self._registry_lock:
            lock = self._locks.get(identity)
        if lock is None:
            return None
        with lock:
            record = self._records.get(identity)
            if record is None:
                return None
            return RateRecord(record.identity, record.count, record.window_reset_at)


def _minutes_until(moment: datetime, now: datetime) -> int:
    seconds = (moment - now).total_seconds()
    return max(1, math.ceil(seconds / 60))
