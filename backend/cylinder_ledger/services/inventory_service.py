# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/cylinder_ledger/services/inventory_service.py

from __future__ import annotations

from datetime import date

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, InventoryTransaction, InventoryRecord, CylinderSize
from ..time_utils import utcnow
from .concurrency import lock_for_update
"""
Inventory Invariants (authoritative)

Inventory model:
- Full-cylinder stock is ledger-derived from InventoryTransaction rows; never
  stored as a mutable quantity field.
- Available quantity is SUM(quantity_delta) over a product's transactions.
- Sales write negative deltas inside the settlement transaction, after the
  sufficiency check made in that same transaction.

Empty cylinder receivables:
- InventoryRecord.empty_cylinder_receivables is per (org, date, product, size)
  and is only ever incremented.
- The size view as of a date is the SUM of increments up to that date.
"""

SALE_MOVEMENT_TYPES = {"PACKAGE": "SALE_PACKAGE", "REFILL": "SALE_REFILL"}


def get_available_full_cylinders(org_id: int, product_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0)
    ).filter(
        InventoryTransaction.org_id == org_id,
        InventoryTransaction.product_id == product_id,
    )
    return int(q.scalar() or 0)


def get_available_by_product(org_id: int, product_ids: list[int]) -> dict[int, int]:
    if not product_ids:
        return {}
    rows = (
        db.session.query(
            InventoryTransaction.product_id,
            func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0),
        )
        .filter(
            InventoryTransaction.org_id == org_id,
            InventoryTransaction.product_id.in_(product_ids),
        )
        .group_by(InventoryTransaction.product_id)
        .all()
    )
    available = {pid: 0 for pid in product_ids}
    for product_id, qty in rows:
        available[product_id] = int(qty or 0)
    return available


def receive_inventory(
    *,
    org_id: int,
    product_id: int,
    quantity: int,
    tx_type: str = "RECEIVE",
    note: str | None = None,
    commit: bool = True,
) -> InventoryTransaction:
    """Record full cylinders arriving in stock."""
    if quantity <= 0:
        raise ValueError("quantity must be > 0")

    product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
    if product is None:
        raise ValueError("product not found")

    tx = InventoryTransaction(
        org_id=org_id,
        product_id=product_id,
        type=tx_type,
        quantity_delta=quantity,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(tx)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return tx


def record_sale_movement(
    *,
    org_id: int,
    product_id: int,
    sale_type: str,
    quantity: int,
    settlement_id: int,
    driver_id: int,
    note: str | None = None,
) -> InventoryTransaction:
    """
    Emit the outbound movement for one sale record.

    Caller owns the transaction (no commit here).
    """
    tx = InventoryTransaction(
        org_id=org_id,
        product_id=product_id,
        type=SALE_MOVEMENT_TYPES[sale_type],
        quantity_delta=-quantity,
        note=note,
        settlement_id=settlement_id,
        driver_id=driver_id,
        occurred_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def increment_empty_cylinder_receivables(
    *,
    org_id: int,
    day: date,
    product_id: int,
    cylinder_size_id: int,
    quantity: int,
) -> InventoryRecord | None:
    """
    Additively upsert the size-indexed receivable for (org, day, product, size).

    Caller owns the transaction. A concurrent insert of the same key is
    absorbed by retrying the increment against the row that won.
    """
    if quantity <= 0:
        return None

    def _find():
        return lock_for_update(
            db.session.query(InventoryRecord).filter_by(
                org_id=org_id, date=day, product_id=product_id, cylinder_size_id=cylinder_size_id,
            )
        ).first()

    record = _find()
    if record is None:
        try:
            with db.session.begin_nested():
                record = InventoryRecord(
                    org_id=org_id,
                    date=day,
                    product_id=product_id,
                    cylinder_size_id=cylinder_size_id,
                    empty_cylinder_receivables=quantity,
                )
                db.session.add(record)
            return record
        except IntegrityError:
            record = _find()
            if record is None:
                raise

    record.empty_cylinder_receivables = record.empty_cylinder_receivables + quantity
    db.session.flush()
    return record


def get_empty_cylinder_receivables_by_size(org_id: int, as_of: date | None = None) -> dict[str, int]:
    """Cumulative empties owed per size label, optionally as of a day (inclusive)."""
    q = (
        db.session.query(CylinderSize.size, func.coalesce(func.sum(InventoryRecord.empty_cylinder_receivables), 0))
        .join(CylinderSize, CylinderSize.id == InventoryRecord.cylinder_size_id)
        .filter(InventoryRecord.org_id == org_id)
    )
    if as_of is not None:
        q = q.filter(InventoryRecord.date <= as_of)
    rows = q.group_by(CylinderSize.size).all()
    return {size: int(total or 0) for size, total in rows}
