# Overview: Service-layer helpers for concurrency; row locks, per-key mutexes and retries.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class KeyedLock:
    """
    In-process mutex per key.

    Serializes read-modify-write cycles on one product or one account while
    letting unrelated keys proceed in parallel. Row locks below cover
    multi-process deployments on databases that honour FOR UPDATE.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict = {}

    def _lock_for(self, key) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key):
        lock = self._lock_for(key)
        with lock:
            yield


product_locks = KeyedLock()
account_locks = KeyedLock()
customer_locks = KeyedLock()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_serialized(locks: KeyedLock, key, func, *, attempts: int = 3):
    """Run func under the per-key mutex, with retry, rolling back on any failure."""
    with locks.hold(key):
        try:
            return run_with_retry(func, attempts=attempts)
        except Exception:
            db.session.rollback()
            raise
