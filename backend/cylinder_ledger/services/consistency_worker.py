# Overview: Consistency Worker; durable, per-key ordered ledger recomputation after commit.

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import RecomputeTask
from ..time_utils import utcnow
from ..validation import ConsistencyRecomputeFailure
from .audit_service import append_audit_event
from .concurrency import KeyedLocks, RETRYABLE_ERRORS, run_with_retry
from .ledger_repository import LedgerRepository
from .receivables_service import ReceivablesService
"""
Consistency Worker Invariants (authoritative)

- A RecomputeTask row is written in the same transaction as the settlement
  (or onboarding, or manual request) that needs it; nothing is lost if the
  process dies between commit and dispatch.
- Tasks for one (org, driver, date) key run one at a time, in id order,
  under an in-process key lock; different keys run in parallel.
- All PENDING tasks of a key are claimed together: one recompute reads every
  committed sale record of that day, so it covers all of them.
- Failure: RUNNING -> FAILED with attempts + 1 and an exponential
  next_attempt_at. A due failure is claimed again by the next run of its key
  (the backoff timer or the poller). Once attempts reach the configured
  maximum the task stays FAILED and an ERROR is logged.
- A claim that loses a race with another process rolls back and leaves the
  key to the winner.
- The settlement is never affected by a recompute failure.
- A changed snapshot with later snapshots behind it enqueues a PROPAGATION
  task for the next later date.
"""

RECOMPUTE_RETRY_ERRORS = RETRYABLE_ERRORS + (IntegrityError,)


def _describe(exc: Exception) -> str:
    details = getattr(exc, "details", None) or {}
    cause = details.get("cause")
    return f"{exc}: {cause}" if cause else f"{type(exc).__name__}: {exc}"


def default_service_factory(session) -> ReceivablesService:
    return ReceivablesService(LedgerRepository(session))


class ConsistencyWorker:
    def __init__(self, app=None, service_factory=None):
        self.service_factory = service_factory or default_service_factory
        self.locks = KeyedLocks()
        self._executor: ThreadPoolExecutor | None = None
        self._executor_guard = threading.Lock()
        self.app = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.app = app
        app.extensions["consistency_worker"] = self

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def _config(self, key: str, default):
        app = self.app or current_app
        return app.config.get(key, default)

    @property
    def eager(self) -> bool:
        return bool(self._config("LEDGER_WORKER_EAGER", False))

    @property
    def max_attempts(self) -> int:
        return int(self._config("LEDGER_RECOMPUTE_MAX_ATTEMPTS", 5))

    @property
    def backoff_seconds(self) -> float:
        return float(self._config("LEDGER_RECOMPUTE_BACKOFF_SECONDS", 2.0))

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_guard:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=int(self._config("LEDGER_WORKER_THREADS", 4)),
                    thread_name_prefix="ledger-worker",
                )
            return self._executor

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_guard:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        *,
        org_id: int,
        driver_id: int,
        ledger_date: date,
        reason: str = "SETTLEMENT",
        settlement_id: int | None = None,
    ) -> RecomputeTask:
        """Add a PENDING task to the caller's transaction (no commit)."""
        task = RecomputeTask(
            org_id=org_id,
            driver_id=driver_id,
            ledger_date=ledger_date,
            reason=reason,
            settlement_id=settlement_id,
            status="PENDING",
            attempts=0,
        )
        db.session.add(task)
        db.session.flush()
        return task

    def dispatch(self, key: tuple) -> None:
        """
        Hand a committed key to the worker. Eager mode processes inline;
        otherwise a pool thread takes it inside a fresh app context.
        """
        if self.eager:
            self.process_until_idle(key)
            return
        app = self.app or current_app._get_current_object()
        self._get_executor().submit(self._run_in_context, app, key)

    def _run_in_context(self, app, key: tuple) -> None:
        with app.app_context():
            try:
                self.process_until_idle(key)
            finally:
                db.session.remove()

    def _schedule_retry(self, key: tuple, delay: float) -> None:
        if self.eager:
            return
        app = self.app or current_app._get_current_object()
        timer = threading.Timer(delay, lambda: self._get_executor().submit(self._run_in_context, app, key))
        timer.daemon = True
        timer.start()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def process_until_idle(self, key: tuple) -> int:
        """Process a key, then any propagation keys it produced."""
        processed = 0
        queue = [key]
        while queue:
            current = queue.pop(0)
            count, follow_up = self.process_key(current)
            processed += count
            if follow_up is not None:
                queue.append(follow_up)
        return processed

    def process_key(self, key: tuple) -> tuple[int, tuple | None]:
        """
        Run every due PENDING task of key under the key lock.

        Returns (tasks completed, propagation key or None).
        """
        org_id, driver_id, ledger_date = key
        with self.locks.hold(key):
            try:
                tasks = self._claim(org_id, driver_id, ledger_date)
            except RETRYABLE_ERRORS as exc:
                db.session.rollback()
                current_app.logger.warning(
                    "Ledger task claim conflict, leaving key to its holder: org=%s driver=%s date=%s error=%s",
                    org_id, driver_id, ledger_date.isoformat(), type(exc).__name__,
                )
                return 0, None
            if not tasks:
                return 0, None
            task_ids = [t.id for t in tasks]

            try:
                follow_up = run_with_retry(
                    lambda: self._recompute(org_id, driver_id, ledger_date, task_ids),
                    retry_on=RECOMPUTE_RETRY_ERRORS,
                )
            except (ConsistencyRecomputeFailure,) + RECOMPUTE_RETRY_ERRORS as exc:
                db.session.rollback()
                self._record_failure(task_ids, key, exc)
                return 0, None

            current_app.logger.info(
                "Ledger recomputed org=%s driver=%s date=%s tasks=%s",
                org_id, driver_id, ledger_date.isoformat(), len(task_ids),
            )
            return len(task_ids), follow_up

    def _claim(self, org_id: int, driver_id: int, ledger_date: date) -> list[RecomputeTask]:
        """Due PENDING tasks of the key, plus FAILED ones whose backoff elapsed."""
        now = utcnow()
        pending = (RecomputeTask.status == "PENDING") & (
            RecomputeTask.next_attempt_at.is_(None) | (RecomputeTask.next_attempt_at <= now)
        )
        retryable = (
            (RecomputeTask.status == "FAILED")
            & (RecomputeTask.attempts < self.max_attempts)
            & (RecomputeTask.next_attempt_at <= now)
        )
        tasks = (
            db.session.query(RecomputeTask)
            .filter(
                RecomputeTask.org_id == org_id,
                RecomputeTask.driver_id == driver_id,
                RecomputeTask.ledger_date == ledger_date,
                pending | retryable,
            )
            .order_by(RecomputeTask.id.asc())
            .all()
        )
        for task in tasks:
            task.status = "RUNNING"
            task.started_at = now
        if tasks:
            db.session.commit()
        return tasks

    def _recompute(self, org_id: int, driver_id: int, ledger_date: date, task_ids: list[int]):
        service = self.service_factory(db.session)
        try:
            outcome = service.recompute(org_id, driver_id, ledger_date)
        except RECOMPUTE_RETRY_ERRORS:
            raise
        except Exception as exc:
            raise ConsistencyRecomputeFailure(
                "Ledger recompute failed",
                details={"driver_id": driver_id, "ledger_date": ledger_date.isoformat(), "cause": repr(exc)},
            ) from exc

        record = outcome.record
        append_audit_event(
            org_id=org_id,
            event_type="LEDGER_RECOMPUTED",
            entity_type="receivable_record",
            entity_id=record.id,
            driver_id=driver_id,
            payload={
                "date": ledger_date.isoformat(),
                "task_ids": task_ids,
                "total_cash_receivables_cents": record.total_cash_receivables_cents,
                "total_cylinder_receivables": record.total_cylinder_receivables,
            },
        )

        follow_up = None
        if outcome.totals_changed:
            nxt = service.repository.get_next_after(org_id, driver_id, ledger_date)
            if nxt is not None:
                self.enqueue(org_id=org_id, driver_id=driver_id, ledger_date=nxt.date, reason="PROPAGATION")
                follow_up = (org_id, driver_id, nxt.date)

        finished = utcnow()
        for task in db.session.query(RecomputeTask).filter(RecomputeTask.id.in_(task_ids)).all():
            task.status = "DONE"
            task.finished_at = finished
            task.last_error = None
        db.session.commit()
        return follow_up

    def _record_failure(self, task_ids: list[int], key: tuple, exc: Exception) -> None:
        org_id, driver_id, ledger_date = key
        now = utcnow()
        retry_in = None
        for task in db.session.query(RecomputeTask).filter(RecomputeTask.id.in_(task_ids)).all():
            task.attempts = (task.attempts or 0) + 1
            task.status = "FAILED"
            task.finished_at = now
            task.last_error = _describe(exc)[:2000]
            if task.attempts >= self.max_attempts:
                task.next_attempt_at = None
                current_app.logger.error(
                    "Ledger recompute gave up after %s attempts: task=%s org=%s driver=%s date=%s error=%s",
                    task.attempts, task.id, org_id, driver_id, ledger_date.isoformat(), task.last_error,
                )
            else:
                delay = self.backoff_seconds * (2 ** (task.attempts - 1))
                task.next_attempt_at = now + timedelta(seconds=delay)
                retry_in = delay if retry_in is None else min(retry_in, delay)
                current_app.logger.warning(
                    "Ledger recompute failed (attempt %s/%s), retrying in %.1fs: task=%s driver=%s date=%s",
                    task.attempts, self.max_attempts, delay, task.id, driver_id, ledger_date.isoformat(),
                )
        db.session.commit()
        if retry_in is not None:
            self._schedule_retry(key, retry_in)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def requeue_due_failures(self, org_id: int | None = None) -> int:
        """FAILED tasks whose backoff elapsed and attempts remain go back to PENDING."""
        q = db.session.query(RecomputeTask).filter(
            RecomputeTask.status == "FAILED",
            RecomputeTask.attempts < self.max_attempts,
            RecomputeTask.next_attempt_at <= utcnow(),
        )
        if org_id is not None:
            q = q.filter(RecomputeTask.org_id == org_id)
        tasks = q.all()
        for task in tasks:
            task.status = "PENDING"
        if tasks:
            db.session.commit()
        return len(tasks)

    def due_keys(self, org_id: int | None = None) -> list[tuple]:
        now = utcnow()
        q = db.session.query(
            RecomputeTask.org_id, RecomputeTask.driver_id, RecomputeTask.ledger_date,
            db.func.min(RecomputeTask.id),
        ).filter(
            RecomputeTask.status == "PENDING",
            (RecomputeTask.next_attempt_at.is_(None)) | (RecomputeTask.next_attempt_at <= now),
        )
        if org_id is not None:
            q = q.filter(RecomputeTask.org_id == org_id)
        rows = q.group_by(RecomputeTask.org_id, RecomputeTask.driver_id, RecomputeTask.ledger_date).all()
        # Earlier dates first so propagation sees settled predecessors
        rows.sort(key=lambda r: (r[0], r[1], r[2], r[3]))
        return [(r[0], r[1], r[2]) for r in rows]

    def drain_due(self, org_id: int | None = None) -> int:
        """Process every due task inline. Returns the number completed."""
        self.requeue_due_failures(org_id)
        processed = 0
        for key in self.due_keys(org_id):
            processed += self.process_until_idle(key)
        return processed

    def run_forever(self, poll_seconds: float = 5.0, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        current_app.logger.info("Ledger worker polling every %.1fs", poll_seconds)
        while not stop_event.is_set():
            try:
                self.drain_due()
            except RETRYABLE_ERRORS:
                db.session.rollback()
                current_app.logger.warning("Ledger worker poll hit a database conflict; will retry")
            stop_event.wait(poll_seconds)


def get_worker() -> ConsistencyWorker:
    return current_app.extensions["consistency_worker"]


def pending_task_count(org_id: int | None = None) -> int:
    q = db.session.query(db.func.count(RecomputeTask.id)).filter(RecomputeTask.status.in_(("PENDING", "RUNNING")))
    if org_id is not None:
        q = q.filter(RecomputeTask.org_id == org_id)
    return int(q.scalar() or 0)
