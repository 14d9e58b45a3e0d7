# Overview: Persistence for per-(org, driver, date) receivable snapshots.

from __future__ import annotations

from datetime import date

from sqlalchemy import func

from ..models import ReceivableRecord, SaleRecord, CylinderSize
from ..time_utils import utcnow
from .concurrency import lock_for_update
from .receivables_calculator import Balances, SettlementContribution, SnapshotValues
"""
Ledger Repository Invariants (authoritative)

- One row per (org_id, driver_id, date); the unique constraint is the last
  line of defence, upsert never inserts when a row exists.
- upsert with unchanged values is a no-op (no version bump, no new row).
- A lost insert race surfaces as IntegrityError; the caller reruns its whole
  read-modify-write from the freshest previous snapshot and overwrites.
- "Previous" means the latest snapshot strictly before the date.
"""

SNAPSHOT_FIELDS = (
    "cash_receivables_change_cents",
    "cylinder_receivables_change",
    "total_cash_receivables_cents",
    "total_cylinder_receivables",
    "cylinder_changes_by_size",
    "opening_cash_cents",
    "opening_cylinders",
)


class LedgerRepository:
    """Snapshot reads and writes bound to one SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    def _key_query(self, org_id: int, driver_id: int):
        return self.session.query(ReceivableRecord).filter(
            ReceivableRecord.org_id == org_id,
            ReceivableRecord.driver_id == driver_id,
        )

    def get(self, org_id: int, driver_id: int, day: date, *, lock: bool = False) -> ReceivableRecord | None:
        q = self._key_query(org_id, driver_id).filter(ReceivableRecord.date == day)
        if lock:
            q = lock_for_update(q)
        return q.first()

    def get_latest_before(self, org_id: int, driver_id: int, day: date) -> ReceivableRecord | None:
        return (
            self._key_query(org_id, driver_id)
            .filter(ReceivableRecord.date < day)
            .order_by(ReceivableRecord.date.desc())
            .first()
        )

    def get_latest_on_or_before(self, org_id: int, driver_id: int, day: date | None = None) -> ReceivableRecord | None:
        q = self._key_query(org_id, driver_id)
        if day is not None:
            q = q.filter(ReceivableRecord.date <= day)
        return q.order_by(ReceivableRecord.date.desc()).first()

    def get_next_after(self, org_id: int, driver_id: int, day: date) -> ReceivableRecord | None:
        return (
            self._key_query(org_id, driver_id)
            .filter(ReceivableRecord.date > day)
            .order_by(ReceivableRecord.date.asc())
            .first()
        )

    def history(self, org_id: int, driver_id: int, start: date | None = None, end: date | None = None) -> list[ReceivableRecord]:
        q = self._key_query(org_id, driver_id)
        if start is not None:
            q = q.filter(ReceivableRecord.date >= start)
        if end is not None:
            q = q.filter(ReceivableRecord.date <= end)
        return q.order_by(ReceivableRecord.date.asc()).all()

    def latest_per_driver(self, org_id: int, as_of: date | None = None) -> list[ReceivableRecord]:
        """Latest snapshot on or before as_of for every driver of the org."""
        latest = self.session.query(
            ReceivableRecord.driver_id.label("driver_id"),
            func.max(ReceivableRecord.date).label("max_date"),
        ).filter(ReceivableRecord.org_id == org_id)
        if as_of is not None:
            latest = latest.filter(ReceivableRecord.date <= as_of)
        latest = latest.group_by(ReceivableRecord.driver_id).subquery()

        return (
            self.session.query(ReceivableRecord)
            .join(
                latest,
                (ReceivableRecord.driver_id == latest.c.driver_id)
                & (ReceivableRecord.date == latest.c.max_date),
            )
            .filter(ReceivableRecord.org_id == org_id)
            .order_by(ReceivableRecord.driver_id.asc())
            .all()
        )

    def previous_balances(self, org_id: int, driver_id: int, day: date) -> Balances | None:
        prev = self.get_latest_before(org_id, driver_id, day)
        if prev is None:
            return None
        return Balances(prev.total_cash_receivables_cents, prev.total_cylinder_receivables)

    def settlement_contributions(self, org_id: int, driver_id: int, day: date) -> list[SettlementContribution]:
        """
        Per-settlement money and refill figures for a driver's day, read from
        the immutable sale records.
        """
        rows = (
            self.session.query(
                SaleRecord.settlement_id,
                SaleRecord.sale_type,
                CylinderSize.size,
                func.sum(SaleRecord.net_value_cents),
                func.sum(SaleRecord.cash_deposited_cents),
                func.sum(SaleRecord.quantity),
                func.sum(SaleRecord.cylinders_deposited),
            )
            .join(CylinderSize, CylinderSize.id == SaleRecord.cylinder_size_id)
            .filter(
                SaleRecord.org_id == org_id,
                SaleRecord.driver_id == driver_id,
                SaleRecord.sale_date == day,
            )
            .group_by(SaleRecord.settlement_id, SaleRecord.sale_type, CylinderSize.size)
            .order_by(SaleRecord.settlement_id.asc())
            .all()
        )

        grouped: dict[int, dict] = {}
        for settlement_id, sale_type, size, net, cash, qty, deposited in rows:
            acc = grouped.setdefault(settlement_id, {"net": 0, "cash": 0, "refill": {}, "deposits": {}})
            acc["net"] += int(net or 0)
            acc["cash"] += int(cash or 0)
            if sale_type == "REFILL":
                acc["refill"][size] = acc["refill"].get(size, 0) + int(qty or 0)
                acc["deposits"][size] = acc["deposits"].get(size, 0) + int(deposited or 0)

        return [
            SettlementContribution(
                settlement_id=settlement_id,
                net_value_cents=acc["net"],
                cash_deposited_cents=acc["cash"],
                refill_by_size=acc["refill"],
                deposits_by_size=acc["deposits"],
            )
            for settlement_id, acc in grouped.items()
        ]

    def upsert(self, org_id: int, driver_id: int, day: date, values: SnapshotValues) -> ReceivableRecord:
        """
        Create or overwrite the snapshot for (org, driver, day).

        Caller owns the transaction. Identical values leave the row untouched.
        """
        record = self.get(org_id, driver_id, day, lock=True)
        if record is None:
            record = ReceivableRecord(org_id=org_id, driver_id=driver_id, date=day)
            self._apply(record, values)
            record.calculated_at = utcnow()
            self.session.add(record)
            self.session.flush()
            return record

        if self._matches(record, values):
            return record

        self._apply(record, values)
        record.calculated_at = utcnow()
        self.session.flush()
        return record

    @staticmethod
    def _apply(record: ReceivableRecord, values: SnapshotValues) -> None:
        for name in SNAPSHOT_FIELDS:
            value = getattr(values, name)
            setattr(record, name, dict(value) if isinstance(value, dict) else value)

    @staticmethod
    def _matches(record: ReceivableRecord, values: SnapshotValues) -> bool:
        for name in SNAPSHOT_FIELDS:
            current = getattr(record, name)
            wanted = getattr(values, name)
            if isinstance(wanted, dict):
                if dict(current or {}) != wanted:
                    return False
            elif current != wanted:
                return False
        return True
