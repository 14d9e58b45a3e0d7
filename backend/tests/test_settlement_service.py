# Overview: Pytest coverage for the settlement write path and its ledger rollup.

"""
Settlement Service Tests

The worker runs in eager mode, so the driver snapshot is up to date as soon
as submit_settlement returns.
"""

from datetime import date

import pytest

from cylinder_ledger.models import (
    AuditEvent, CustomerReceivable, InventoryRecord, ReceivableRecord,
    RecomputeTask, SaleRecord, Settlement,
)
from cylinder_ledger.services import inventory_service, settlement_service
from cylinder_ledger.validation import InsufficientInventory, InvalidSettlement, NotFound


SALE_DAY = date(2026, 4, 10)


def _payload(driver, products, **overrides):
    body = {
        "driver_id": driver.id,
        "customer_name": "Rahim Store",
        "payment_type": "CREDIT",
        "sale_date": SALE_DAY.isoformat(),
        "discount_cents": 10000,
        "cash_deposited_cents": 100000,
        "cylinder_deposits": {"12L": 2},
        "items": [
            {"product_id": products["A"].id, "package_qty": 2, "refill_qty": 3,
             "package_price_cents": 50000, "refill_price_cents": 30000},
            {"product_id": products["B"].id, "refill_qty": 1, "refill_price_cents": 30000},
        ],
    }
    body.update(overrides)
    return body


def _submit(org, body):
    request = settlement_service.parse_settlement_payload(body)
    return settlement_service.submit_settlement(org.id, request, created_by="tester")


class TestSubmitSettlement:
    def test_creates_sale_records_and_customer_receivables(self, db_session, org_a, driver, stocked):
        result = _submit(org_a, _payload(driver, stocked))

        assert len(result["sale_records"]) == 3
        assert result["summary"]["net_value_cents"] == 210000
        kinds = sorted((r["receivable_type"], r["amount_cents"], r["quantity"], r["size"])
                       for r in result["customer_receivables"])
        assert kinds == [("CASH", 110000, 0, None), ("CYLINDER", 0, 2, "12L")]
        for r in result["customer_receivables"]:
            assert r["status"] == "CURRENT"
            assert r["due_date"] == "2026-05-10"

    def test_inventory_movements_per_sale_record(self, db_session, org_a, driver, stocked):
        result = _submit(org_a, _payload(driver, stocked))

        assert inventory_service.get_available_full_cylinders(org_a.id, stocked["A"].id) == 95
        assert inventory_service.get_available_full_cylinders(org_a.id, stocked["B"].id) == 99
        for rec in db_session.query(SaleRecord).filter_by(settlement_id=result["settlement_id"]).all():
            assert rec.inventory_transaction_id is not None

    def test_empty_cylinder_receivables_by_size(self, db_session, org_a, driver, stocked):
        _submit(org_a, _payload(driver, stocked))
        assert inventory_service.get_empty_cylinder_receivables_by_size(org_a.id) == {"12L": 2}
        rows = db_session.query(InventoryRecord).filter_by(org_id=org_a.id, date=SALE_DAY).all()
        assert sum(r.empty_cylinder_receivables for r in rows) == 2

    def test_ledger_snapshot_after_commit(self, db_session, org_a, driver, stocked):
        _submit(org_a, _payload(driver, stocked))

        snap = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=SALE_DAY).one()
        assert snap.cash_receivables_change_cents == 110000
        assert snap.total_cash_receivables_cents == 110000
        assert snap.cylinder_receivables_change == 2
        assert snap.cylinder_changes_by_size == {"12L": 2}

        task = db_session.query(RecomputeTask).one()
        assert task.status == "DONE"
        assert task.reason == "SETTLEMENT"

    def test_same_day_settlements_accumulate(self, db_session, org_a, driver, stocked):
        _submit(org_a, _payload(driver, stocked))
        _submit(org_a, _payload(driver, stocked, cash_deposited_cents=0, discount_cents=0,
                                cylinder_deposits={}))

        snap = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=SALE_DAY).one()
        assert snap.cash_receivables_change_cents == 110000 + 220000
        assert snap.total_cylinder_receivables == 2 + 4

    def test_overpayment_on_one_settlement_never_credits_another(self, db_session, org_a, driver, stocked):
        items = [{"product_id": stocked["C"].id, "package_qty": 1, "package_price_cents": 5000}]
        _submit(org_a, _payload(driver, stocked, items=items, discount_cents=0,
                                cash_deposited_cents=9000, cylinder_deposits={}))
        _submit(org_a, _payload(driver, stocked, items=items, discount_cents=0,
                                cash_deposited_cents=1000, cylinder_deposits={}))

        snap = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=SALE_DAY).one()
        assert snap.total_cash_receivables_cents == 4000

    def test_running_balance_across_days(self, db_session, org_a, driver, stocked):
        _submit(org_a, _payload(driver, stocked))
        _submit(org_a, _payload(driver, stocked, sale_date="2026-04-12"))

        snaps = (db_session.query(ReceivableRecord)
                 .filter_by(driver_id=driver.id).order_by(ReceivableRecord.date).all())
        assert [s.date for s in snaps] == [SALE_DAY, date(2026, 4, 12)]
        assert snaps[1].total_cash_receivables_cents == (
            snaps[0].total_cash_receivables_cents + snaps[1].cash_receivables_change_cents
        )
        assert snaps[1].total_cylinder_receivables == 4

    def test_back_dated_settlement_propagates_forward(self, db_session, org_a, driver, stocked):
        _submit(org_a, _payload(driver, stocked, sale_date="2026-04-12"))
        _submit(org_a, _payload(driver, stocked))  # earlier day

        later = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=date(2026, 4, 12)).one()
        assert later.total_cash_receivables_cents == 220000
        reasons = sorted(t.reason for t in db_session.query(RecomputeTask).all())
        assert reasons == ["PROPAGATION", "SETTLEMENT", "SETTLEMENT"]

    def test_audit_event_written(self, db_session, org_a, driver, stocked):
        result = _submit(org_a, _payload(driver, stocked))
        ev = db_session.query(AuditEvent).filter_by(event_type="SETTLEMENT_SUBMITTED").one()
        assert ev.settlement_id == result["settlement_id"]
        assert ev.payload["cash_receivable_cents"] == 110000


class TestRejectedSettlements:
    def _assert_nothing_written(self, db_session):
        assert db_session.query(Settlement).count() == 0
        assert db_session.query(SaleRecord).count() == 0
        assert db_session.query(CustomerReceivable).count() == 0
        assert db_session.query(RecomputeTask).count() == 0

    def test_insufficient_inventory(self, db_session, org_a, driver, products):
        inventory_service.receive_inventory(org_id=org_a.id, product_id=products["A"].id, quantity=3)
        with pytest.raises(InsufficientInventory):
            _submit(org_a, _payload(driver, products))
        self._assert_nothing_written(db_session)
        assert inventory_service.get_available_full_cylinders(org_a.id, products["A"].id) == 3

    def test_foreign_driver(self, db_session, org_a, driver_b, stocked):
        with pytest.raises(NotFound):
            _submit(org_a, _payload(driver_b, stocked))
        self._assert_nothing_written(db_session)

    def test_inactive_product(self, db_session, org_a, driver, stocked):
        stocked["B"].is_active = False
        db_session.commit()
        with pytest.raises(NotFound) as exc:
            _submit(org_a, _payload(driver, stocked))
        assert exc.value.details["missing_ids"] == [stocked["B"].id]
        self._assert_nothing_written(db_session)

    def test_discount_exceeds_value(self, db_session, org_a, driver, stocked):
        with pytest.raises(InvalidSettlement):
            _submit(org_a, _payload(driver, stocked, discount_cents=220001))
        self._assert_nothing_written(db_session)


class TestParsePayload:
    def test_scientific_notation_rejected(self, db_session, driver, stocked):
        body = _payload(driver, stocked, cash_deposited_cents="1e5")
        with pytest.raises(InvalidSettlement) as exc:
            settlement_service.parse_settlement_payload(body)
        assert exc.value.details["field"] == "cash_deposited_cents"

    def test_missing_driver(self, db_session, driver, stocked):
        body = _payload(driver, stocked)
        del body["driver_id"]
        with pytest.raises(InvalidSettlement) as exc:
            settlement_service.parse_settlement_payload(body)
        assert exc.value.details["field"] == "driver_id"

    def test_defaults(self, db_session, driver, stocked):
        body = _payload(driver, stocked)
        del body["customer_name"]
        del body["payment_type"]
        request = settlement_service.parse_settlement_payload(body)
        assert request.customer_name == "Walk-in Customer"
        assert request.payment_type == "CASH"
