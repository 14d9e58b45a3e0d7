# Overview: Driver-level receivables; recompute and read ledger snapshots through an injected repository.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from ..models import ReceivableRecord
from . import receivables_calculator as calc
from .ledger_repository import LedgerRepository


@dataclass
class RecomputeOutcome:
    record: ReceivableRecord
    created: bool
    totals_changed: bool


class ReceivablesService:
    """
    Recomputes ledger snapshots.

    Built around one LedgerRepository; tests may hand in a double that
    implements the same methods.
    """

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def recompute(self, org_id: int, driver_id: int, day: date) -> RecomputeOutcome:
        """
        Rebuild the snapshot for (org, driver, day) from that day's sale
        records and the latest earlier snapshot. Caller owns the transaction.
        """
        existing = self.repository.get(org_id, driver_id, day, lock=True)
        before = (
            (existing.total_cash_receivables_cents, existing.total_cylinder_receivables)
            if existing is not None else None
        )

        changes = calc.aggregate_day(
            self.repository.settlement_contributions(org_id, driver_id, day),
            opening_cash_cents=existing.opening_cash_cents if existing else 0,
            opening_cylinders=existing.opening_cylinders if existing else 0,
        )
        values = calc.compute(self.repository.previous_balances(org_id, driver_id, day), changes)
        record = self.repository.upsert(org_id, driver_id, day, values)

        after = (record.total_cash_receivables_cents, record.total_cylinder_receivables)
        return RecomputeOutcome(record=record, created=existing is None, totals_changed=before != after)

    def seed_opening(self, org_id: int, driver_id: int, day: date, *, cash_cents: int, cylinders_by_size: dict[str, int]) -> ReceivableRecord:
        """
        Write the day-zero snapshot carrying onboarding balances.

        Settlements already recorded on that day are folded in alongside the
        opening figures. Per-size opening quantities live on the baselines;
        the snapshot keeps only the aggregate so a later recompute of this
        key is a no-op.
        """
        changes = calc.aggregate_day(
            self.repository.settlement_contributions(org_id, driver_id, day),
            opening_cash_cents=cash_cents,
            opening_cylinders=sum(cylinders_by_size.values()),
        )
        values = calc.compute(self.repository.previous_balances(org_id, driver_id, day), changes)
        return self.repository.upsert(org_id, driver_id, day, values)

    def get_snapshot(self, org_id: int, driver_id: int, day: date | None = None) -> dict:
        """
        Latest snapshot on or before day. A driver with no history reads as
        all zeros, dated the requested day.
        """
        record = self.repository.get_latest_on_or_before(org_id, driver_id, day)
        if record is not None:
            return record.to_dict()
        return {
            "id": None,
            "org_id": org_id,
            "driver_id": driver_id,
            "date": day.isoformat() if day else None,
            "cash_receivables_change_cents": 0,
            "cylinder_receivables_change": 0,
            "total_cash_receivables_cents": 0,
            "total_cylinder_receivables": 0,
            "cylinder_changes_by_size": {},
            "opening_cash_cents": 0,
            "opening_cylinders": 0,
            "calculated_at": None,
            "version_id": None,
        }

    def history(self, org_id: int, driver_id: int, start: date | None = None, end: date | None = None) -> list[dict]:
        return [r.to_dict() for r in self.repository.history(org_id, driver_id, start, end)]

    def summary(self, org_id: int, as_of: date | None = None) -> dict:
        records = self.repository.latest_per_driver(org_id, as_of)
        drivers = [
            {
                "driver_id": r.driver_id,
                "driver_name": r.driver.name if r.driver else None,
                "as_of": r.date.isoformat(),
                "total_cash_receivables_cents": r.total_cash_receivables_cents,
                "total_cylinder_receivables": r.total_cylinder_receivables,
            }
            for r in records
        ]
        return {
            "as_of": as_of.isoformat() if as_of else None,
            "drivers": drivers,
            "total_cash_receivables_cents": sum(d["total_cash_receivables_cents"] for d in drivers),
            "total_cylinder_receivables": sum(d["total_cylinder_receivables"] for d in drivers),
        }
