# Overview: Service-layer concurrency primitives shared by the ledger, shift and order services.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


_registry_guard = threading.Lock()
_entity_locks: dict[tuple, threading.RLock] = {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations and refresh the
    identity map from the locked row.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the entity locks below
    and the ledger sequence constraint carry the serialization.
    """
    return query.with_for_update().populate_existing()


def _lock_for(key: tuple) -> threading.RLock:
    with _registry_guard:
        lock = _entity_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _entity_locks[key] = lock
        return lock


@contextmanager
def entity_lock(*keys: tuple):
    """
    Serialize writers of the given entities within this process.

    Keys look like ("payment_method", 7) or ("register", 3). They are
    acquired in sorted order so two callers locking the same pair can never
    deadlock, and the locks are reentrant so a service holding a lock may call
    another service that takes it again. Unrelated entities never contend.
    """
    ordered = sorted(set(keys), key=lambda k: (str(k[0]), str(k[1])))
    acquired = []
    try:
        for key in ordered:
            lock = _lock_for(key)
            lock.acquire()
            acquired.append(lock)
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and any extra ``retry_on`` types.
    Domain errors propagate immediately.
    """
    retryable = (OperationalError, StaleDataError) + tuple(retry_on)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
