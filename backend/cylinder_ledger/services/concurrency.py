# Overview: Service-layer helpers for concurrency; row locks, retries and per-key serialization.

from __future__ import annotations

import threading
import time
from collections import defaultdict
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Take the database write lock up front on SQLite.

    Check-then-write sequences (inventory sufficiency, ledger upsert) must
    not interleave with another writer. Other dialects rely on row locks.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    # pysqlite may already have opened a transaction for earlier DML
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = RETRYABLE_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default; callers may widen retry_on
    (the ledger upsert also retries IntegrityError from a lost insert race).
    Each retry rolls back and calls func again from scratch.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class KeyedLocks:
    """
    One in-process lock per key.

    Work for the same key runs one at a time; different keys never wait on
    each other. Lock objects are dropped once no holder or waiter remains.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict = {}
        self._users: dict = defaultdict(int)

    @contextmanager
    def hold(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] += 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if self._users[key] <= 0:
                    self._users.pop(key, None)
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
