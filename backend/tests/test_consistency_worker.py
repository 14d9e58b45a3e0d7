# Overview: Pytest coverage for the ledger consistency worker (eager mode).

"""
Consistency Worker Tests

Recompute failures are simulated by swapping the worker's service factory
for one whose recompute raises.
"""

import logging
from datetime import date

import pytest
from sqlalchemy.orm.exc import StaleDataError

from cylinder_ledger.models import AuditEvent, ReceivableRecord, RecomputeTask, Settlement
from cylinder_ledger.services import settlement_service
from cylinder_ledger.services.consistency_worker import default_service_factory, pending_task_count


DAY = date(2026, 6, 3)


class BrokenService:
    def __init__(self, session):
        self.session = session

    def recompute(self, org_id, driver_id, day):
        raise RuntimeError("boom")


@pytest.fixture
def worker(app):
    return app.extensions["consistency_worker"]


def _sell(org, driver, product, day=DAY, refill_qty=1):
    request = settlement_service.parse_settlement_payload({
        "driver_id": driver.id,
        "sale_date": day.isoformat(),
        "items": [{"product_id": product.id, "refill_qty": refill_qty, "refill_price_cents": 1000}],
    })
    return settlement_service.submit_settlement(org.id, request)


class TestFailureIsolation:
    def test_settlement_commits_when_recompute_fails(self, db_session, org_a, driver, stocked, worker, monkeypatch):
        monkeypatch.setattr(worker, "service_factory", BrokenService)

        result = _sell(org_a, driver, stocked["A"])

        assert db_session.get(Settlement, result["settlement_id"]) is not None
        assert db_session.query(ReceivableRecord).count() == 0
        task = db_session.query(RecomputeTask).one()
        assert task.status == "FAILED"
        assert task.attempts == 1
        assert "boom" in task.last_error
        assert task.next_attempt_at is not None

    def test_drain_retries_failed_task(self, db_session, org_a, driver, stocked, worker, monkeypatch):
        monkeypatch.setattr(worker, "service_factory", BrokenService)
        _sell(org_a, driver, stocked["A"])

        monkeypatch.setattr(worker, "service_factory", default_service_factory)
        assert worker.drain_due(org_a.id) == 1

        task = db_session.query(RecomputeTask).one()
        assert task.status == "DONE"
        assert task.last_error is None
        snap = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=DAY).one()
        assert snap.total_cash_receivables_cents == 1000

    def test_gives_up_after_max_attempts(self, db_session, org_a, driver, stocked, worker, monkeypatch, caplog):
        monkeypatch.setattr(worker, "service_factory", BrokenService)
        _sell(org_a, driver, stocked["A"])

        with caplog.at_level(logging.WARNING):
            worker.drain_due(org_a.id)
            worker.drain_due(org_a.id)

        task = db_session.query(RecomputeTask).one()
        assert task.status == "FAILED"
        assert task.attempts == worker.max_attempts
        assert task.next_attempt_at is None
        assert any(r.levelno == logging.ERROR and "gave up" in r.getMessage() for r in caplog.records)

        assert worker.drain_due(org_a.id) == 0
        assert db_session.query(RecomputeTask).one().attempts == worker.max_attempts


class TestProcessing:
    def test_pending_tasks_for_one_key_coalesce(self, db_session, org_a, driver, worker):
        for _ in range(3):
            worker.enqueue(org_id=org_a.id, driver_id=driver.id, ledger_date=DAY, reason="MANUAL")
        db_session.commit()
        assert pending_task_count(org_a.id) == 3

        completed, follow_up = worker.process_key((org_a.id, driver.id, DAY))

        assert completed == 3
        assert follow_up is None
        assert len(worker.locks) == 0
        assert pending_task_count(org_a.id) == 0
        events = db_session.query(AuditEvent).filter_by(event_type="LEDGER_RECOMPUTED").all()
        assert len(events) == 1
        assert len(events[0].payload["task_ids"]) == 3

    def test_propagation_chain_reaches_every_later_day(self, db_session, org_a, driver, stocked):
        _sell(org_a, driver, stocked["A"], day=date(2026, 6, 5))
        _sell(org_a, driver, stocked["A"], day=date(2026, 6, 8))
        _sell(org_a, driver, stocked["A"], day=date(2026, 6, 1), refill_qty=3)

        totals = [
            (s.date.day, s.total_cash_receivables_cents, s.total_cylinder_receivables)
            for s in db_session.query(ReceivableRecord).order_by(ReceivableRecord.date).all()
        ]
        assert totals == [(1, 3000, 3), (5, 4000, 4), (8, 5000, 5)]

    def test_unchanged_totals_do_not_propagate(self, db_session, org_a, driver, stocked, worker):
        _sell(org_a, driver, stocked["A"], day=date(2026, 6, 1))
        _sell(org_a, driver, stocked["A"], day=date(2026, 6, 5))

        worker.enqueue(org_id=org_a.id, driver_id=driver.id, ledger_date=date(2026, 6, 1), reason="MANUAL")
        db_session.commit()
        assert worker.process_until_idle((org_a.id, driver.id, date(2026, 6, 1))) == 1

        assert db_session.query(RecomputeTask).filter_by(reason="PROPAGATION").count() == 0

    def test_recompute_is_idempotent(self, db_session, org_a, driver, stocked, worker):
        _sell(org_a, driver, stocked["A"])
        before = db_session.query(ReceivableRecord).one()
        version = before.version_id

        worker.enqueue(org_id=org_a.id, driver_id=driver.id, ledger_date=DAY, reason="MANUAL")
        db_session.commit()
        worker.process_until_idle((org_a.id, driver.id, DAY))

        after = db_session.query(ReceivableRecord).one()
        assert after.version_id == version
        assert after.total_cash_receivables_cents == 1000

    def test_nothing_due_is_a_no_op(self, db_session, org_a, driver, worker):
        assert worker.process_key((org_a.id, driver.id, DAY)) == (0, None)
        assert worker.drain_due() == 0


class TestBackoffRetry:
    def test_retry_run_claims_failed_task(self, db_session, org_a, driver, stocked, worker, monkeypatch):
        scheduled = []
        monkeypatch.setattr(worker, "service_factory", BrokenService)
        monkeypatch.setattr(worker, "_schedule_retry", lambda key, delay: scheduled.append(key))
        _sell(org_a, driver, stocked["A"])
        assert scheduled == [(org_a.id, driver.id, DAY)]

        monkeypatch.setattr(worker, "service_factory", default_service_factory)
        assert worker.process_until_idle(scheduled[0]) == 1

        task = db_session.query(RecomputeTask).one()
        assert task.status == "DONE"
        assert task.attempts == 1
        snap = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=DAY).one()
        assert snap.total_cash_receivables_cents == 1000

    def test_failure_not_yet_due_is_left_alone(self, app, db_session, org_a, driver, stocked, worker, monkeypatch):
        monkeypatch.setitem(app.config, "LEDGER_RECOMPUTE_BACKOFF_SECONDS", 600.0)
        monkeypatch.setattr(worker, "service_factory", BrokenService)
        _sell(org_a, driver, stocked["A"])

        monkeypatch.setattr(worker, "service_factory", default_service_factory)
        assert worker.process_until_idle((org_a.id, driver.id, DAY)) == 0
        assert db_session.query(RecomputeTask).one().status == "FAILED"

    def test_exhausted_task_is_not_claimed(self, db_session, org_a, driver, worker):
        db_session.add(RecomputeTask(
            org_id=org_a.id, driver_id=driver.id, ledger_date=DAY,
            reason="MANUAL", status="FAILED", attempts=worker.max_attempts,
        ))
        db_session.commit()

        assert worker.process_key((org_a.id, driver.id, DAY)) == (0, None)
        assert db_session.query(RecomputeTask).one().status == "FAILED"

    def test_claim_conflict_returns_without_work(self, db_session, org_a, driver, worker, monkeypatch, caplog):
        def conflict(*args):
            raise StaleDataError("task claimed by another worker")

        monkeypatch.setattr(worker, "_claim", conflict)
        with caplog.at_level(logging.WARNING):
            assert worker.process_key((org_a.id, driver.id, DAY)) == (0, None)

        assert len(worker.locks) == 0
        assert any(r.levelno == logging.WARNING and "claim conflict" in r.getMessage() for r in caplog.records)
