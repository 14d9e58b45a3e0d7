# Overview: Pytest coverage for one-time onboarding of opening balances.

from datetime import date

import pytest

from cylinder_ledger.models import (
    AuditEvent, CustomerReceivable, DriverCylinderSizeBaseline, Organization, ReceivableRecord,
)
from cylinder_ledger.services import baseline_service, customer_debt_service, inventory_service, settlement_service
from cylinder_ledger.validation import DuplicateBaselineSeed, InvalidSettlement, LedgerError, NotFound


ONBOARDING_DAY = date(2026, 4, 1)
DAY_ZERO = date(2026, 3, 31)


def _seed(org, driver, **driver_overrides):
    entry = {"driver_id": driver.id, "opening_cash_cents": 0, "cylinders": {"12L": 5}}
    entry.update(driver_overrides)
    return baseline_service.seed_onboarding(org.id, {
        "onboarding_date": ONBOARDING_DAY.isoformat(),
        "drivers": [entry],
    })


def _refill_settlement(org, driver, product, day, qty=2):
    request = settlement_service.parse_settlement_payload({
        "driver_id": driver.id,
        "sale_date": day.isoformat(),
        "items": [{"product_id": product.id, "refill_qty": qty, "refill_price_cents": 1000}],
        "cash_deposited_cents": qty * 1000,
    })
    return settlement_service.submit_settlement(org.id, request)


class TestSeedOnboarding:
    def test_baseline_folded_into_day_zero_snapshot(self, db_session, org_a, driver, stocked):
        """Baseline 12L=5, day-one shortfall of 2 gives a running total of 7."""
        _seed(org_a, driver)
        _refill_settlement(org_a, driver, stocked["A"], ONBOARDING_DAY)

        snaps = (db_session.query(ReceivableRecord)
                 .filter_by(driver_id=driver.id).order_by(ReceivableRecord.date).all())
        assert [s.date for s in snaps] == [DAY_ZERO, ONBOARDING_DAY]
        assert snaps[0].total_cylinder_receivables == 5
        assert snaps[0].opening_cylinders == 5
        assert snaps[1].cylinder_receivables_change == 2
        assert snaps[1].total_cylinder_receivables == 7
        assert snaps[1].total_cash_receivables_cents == 0

    def test_creates_baselines_and_marks_org(self, db_session, org_a, driver, sizes, products):
        result = _seed(org_a, driver, opening_cash_cents=25000, cylinders={"12L": 5, "35KG": 2})

        assert result["day_zero"] == "2026-03-31"
        assert sorted((b["size"], b["baseline_quantity"]) for b in result["baselines"]) == [("12L", 5), ("35KG", 2)]
        assert all(b["source"] == "ONBOARDING" for b in result["baselines"])
        assert db_session.get(Organization, org_a.id).onboarding_completed
        assert db_session.query(AuditEvent).filter_by(event_type="BASELINES_SEEDED").count() == 1

        snap = result["snapshots"][0]
        assert snap["date"] == "2026-03-31"
        assert snap["opening_cash_cents"] == 25000
        assert snap["total_cash_receivables_cents"] == 25000
        assert snap["total_cylinder_receivables"] == 7

    def test_day_zero_inventory_receivables(self, db_session, org_a, driver, sizes, products):
        _seed(org_a, driver, cylinders={"12L": 5, "35KG": 2})
        assert inventory_service.get_empty_cylinder_receivables_by_size(org_a.id, DAY_ZERO) == {"12L": 5, "35KG": 2}

    def test_opening_customer_receivables_keep_reconciliation_even(self, db_session, org_a, driver, sizes, products):
        _seed(org_a, driver, opening_cash_cents=25000, cylinders={"12L": 5})

        rows = db_session.query(CustomerReceivable).filter_by(driver_id=driver.id).all()
        assert {r.customer_name for r in rows} == {customer_debt_service.ONBOARDING_CUSTOMER}
        assert all(r.settlement_id is None for r in rows)

        report = customer_debt_service.reconcile_driver(org_a.id, driver.id)
        assert report["cash_difference_cents"] == 0
        assert report["cylinder_difference"] == 0

    def test_opening_stock_movements(self, db_session, org_a, driver, products):
        result = baseline_service.seed_onboarding(org_a.id, {
            "onboarding_date": ONBOARDING_DAY.isoformat(),
            "drivers": [],
            "stock": [{"product_id": products["C"].id, "quantity": 40}],
        })
        assert [m["type"] for m in result["stock_movements"]] == ["ONBOARDING"]
        assert inventory_service.get_available_full_cylinders(org_a.id, products["C"].id) == 40

    def test_late_onboarding_propagates_to_existing_snapshots(self, db_session, org_a, driver, stocked):
        _refill_settlement(org_a, driver, stocked["A"], date(2026, 4, 5))
        _seed(org_a, driver)

        later = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=date(2026, 4, 5)).one()
        assert later.total_cylinder_receivables == 7

    def test_settlement_on_day_zero_is_kept(self, db_session, org_a, driver, stocked):
        """A settlement dated the day before onboarding stays in the day-zero totals."""
        request = settlement_service.parse_settlement_payload({
            "driver_id": driver.id,
            "sale_date": DAY_ZERO.isoformat(),
            "items": [{"product_id": stocked["A"].id, "refill_qty": 1, "refill_price_cents": 1000}],
        })
        settlement_service.submit_settlement(org_a.id, request)

        _seed(org_a, driver, opening_cash_cents=500)

        snap = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=DAY_ZERO).one()
        assert snap.opening_cash_cents == 500
        assert snap.opening_cylinders == 5
        assert snap.total_cash_receivables_cents == 1000 + 500
        assert snap.total_cylinder_receivables == 1 + 5
        assert snap.cylinder_changes_by_size == {"12L": 1}

        _refill_settlement(org_a, driver, stocked["A"], ONBOARDING_DAY)
        day_one = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=ONBOARDING_DAY).one()
        assert day_one.total_cash_receivables_cents == 1500
        assert day_one.total_cylinder_receivables == 8


class TestSeedGuards:
    def test_second_run_rejected(self, db_session, org_a, driver, products):
        _seed(org_a, driver)
        with pytest.raises(DuplicateBaselineSeed):
            _seed(org_a, driver, cylinders={"12L": 9})
        assert db_session.query(DriverCylinderSizeBaseline).count() == 1
        assert db_session.query(DriverCylinderSizeBaseline).one().baseline_quantity == 5

    def test_unknown_size(self, db_session, org_a, driver, products):
        with pytest.raises(NotFound):
            _seed(org_a, driver, cylinders={"50L": 1})
        assert db_session.query(DriverCylinderSizeBaseline).count() == 0
        assert not db_session.get(Organization, org_a.id).onboarding_completed

    def test_foreign_driver(self, db_session, org_a, driver_b, products):
        with pytest.raises(NotFound):
            _seed(org_a, driver_b)

    def test_duplicate_driver_entry(self, db_session, org_a, driver, products):
        entry = {"driver_id": driver.id, "cylinders": {"12L": 1}}
        with pytest.raises(InvalidSettlement):
            baseline_service.seed_onboarding(org_a.id, {"drivers": [entry, entry]})


class TestBaselineImmutability:
    def test_update_rejected(self, db_session, org_a, driver, products):
        _seed(org_a, driver)
        baseline = db_session.query(DriverCylinderSizeBaseline).one()
        baseline.baseline_quantity = 99
        with pytest.raises(LedgerError):
            db_session.flush()
        db_session.rollback()
        assert db_session.query(DriverCylinderSizeBaseline).one().baseline_quantity == 5

    def test_delete_rejected(self, db_session, org_a, driver, products):
        _seed(org_a, driver)
        db_session.delete(db_session.query(DriverCylinderSizeBaseline).one())
        with pytest.raises(LedgerError):
            db_session.flush()
        db_session.rollback()
        assert db_session.query(DriverCylinderSizeBaseline).count() == 1
