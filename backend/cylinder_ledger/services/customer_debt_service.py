# Overview: Customer Debt Tracker; per-customer open balances spawned by settlements.

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CustomerReceivable, Settlement, CylinderSize
from .ledger_repository import LedgerRepository
"""
Customer Debt Invariants (authoritative)

- Rows are created only when a settlement leaves a positive uncollected amount:
  one CASH row for net - cash, one CYLINDER row per size with a refill
  shortfall. Status starts CURRENT; due date is sale date + grace days.
- The settlement engine never decrements or closes rows; collection is an
  external operation.
- This tracker never reads or writes ledger snapshots while creating rows.
  The reconciliation report is the only place the two views meet.
"""

RECEIVABLE_TYPES = ("CASH", "CYLINDER")
RECEIVABLE_STATUSES = ("CURRENT", "OVERDUE", "PAID")
OPEN_STATUSES = ("CURRENT", "OVERDUE")
ONBOARDING_CUSTOMER = "Onboarding Balance"


def _due_date(day: date) -> date:
    return day + timedelta(days=current_app.config.get("RECEIVABLE_GRACE_DAYS", 30))


def create_for_settlement(
    settlement: Settlement,
    *,
    cash_receivable_cents: int,
    cylinder_shortfall_by_size: dict[str, int],
    sizes: dict[str, CylinderSize],
) -> list[CustomerReceivable]:
    """
    Create the settlement's customer receivables. Caller owns the transaction.
    """
    due = _due_date(settlement.sale_date)
    created: list[CustomerReceivable] = []

    if cash_receivable_cents > 0:
        created.append(CustomerReceivable(
            org_id=settlement.org_id,
            driver_id=settlement.driver_id,
            settlement_id=settlement.id,
            customer_name=settlement.customer_name,
            receivable_type="CASH",
            amount_cents=cash_receivable_cents,
            quantity=0,
            due_date=due,
            status="CURRENT",
            notes=f"Settlement #{settlement.id}: partial cash payment",
        ))

    for size in sorted(cylinder_shortfall_by_size):
        qty = cylinder_shortfall_by_size[size]
        if qty <= 0:
            continue
        created.append(CustomerReceivable(
            org_id=settlement.org_id,
            driver_id=settlement.driver_id,
            settlement_id=settlement.id,
            customer_name=settlement.customer_name,
            receivable_type="CYLINDER",
            amount_cents=0,
            quantity=qty,
            cylinder_size_id=sizes[size].id if size in sizes else None,
            size=size,
            due_date=due,
            status="CURRENT",
            notes=f"Settlement #{settlement.id}: {qty} x {size} empties not returned",
        ))

    db.session.add_all(created)
    db.session.flush()
    return created


def create_opening_balance(
    *,
    org_id: int,
    driver_id: int,
    day: date,
    cash_cents: int = 0,
    cylinders_by_size: dict[str, int] | None = None,
    sizes: dict[str, CylinderSize] | None = None,
) -> list[CustomerReceivable]:
    """Onboarding balances as open customer items, so reconciliation starts even."""
    sizes = sizes or {}
    due = _due_date(day)
    rows: list[CustomerReceivable] = []
    if cash_cents > 0:
        rows.append(CustomerReceivable(
            org_id=org_id,
            driver_id=driver_id,
            customer_name=ONBOARDING_CUSTOMER,
            receivable_type="CASH",
            amount_cents=cash_cents,
            due_date=due,
            status="CURRENT",
            notes="Opening cash balance",
        ))
    for size, qty in sorted((cylinders_by_size or {}).items()):
        if qty <= 0:
            continue
        rows.append(CustomerReceivable(
            org_id=org_id,
            driver_id=driver_id,
            customer_name=ONBOARDING_CUSTOMER,
            receivable_type="CYLINDER",
            quantity=qty,
            cylinder_size_id=sizes[size].id if size in sizes else None,
            size=size,
            due_date=due,
            status="CURRENT",
            notes=f"Opening {size} cylinder balance",
        ))
    db.session.add_all(rows)
    db.session.flush()
    return rows


def list_receivables(
    org_id: int,
    *,
    driver_id: int | None = None,
    status: str | None = None,
    receivable_type: str | None = None,
    settlement_id: int | None = None,
) -> list[CustomerReceivable]:
    q = db.session.query(CustomerReceivable).filter(CustomerReceivable.org_id == org_id)
    if driver_id is not None:
        q = q.filter(CustomerReceivable.driver_id == driver_id)
    if status:
        q = q.filter(CustomerReceivable.status == status)
    if receivable_type:
        q = q.filter(CustomerReceivable.receivable_type == receivable_type)
    if settlement_id is not None:
        q = q.filter(CustomerReceivable.settlement_id == settlement_id)
    return q.order_by(CustomerReceivable.id.asc()).all()


def get_customer_aggregations(
    org_id: int,
    *,
    driver_id: int | None = None,
    status: str | None = None,
    receivable_type: str | None = None,
) -> list[dict]:
    """
    Open balances rolled up per (driver, customer).

    Defaults to open statuses (CURRENT, OVERDUE) when no status is given.
    """
    q = (
        db.session.query(
            CustomerReceivable.driver_id,
            CustomerReceivable.customer_name,
            CustomerReceivable.receivable_type,
            CustomerReceivable.size,
            func.count(CustomerReceivable.id),
            func.coalesce(func.sum(CustomerReceivable.amount_cents), 0),
            func.coalesce(func.sum(CustomerReceivable.quantity), 0),
            func.min(CustomerReceivable.due_date),
        )
        .filter(CustomerReceivable.org_id == org_id)
    )
    if driver_id is not None:
        q = q.filter(CustomerReceivable.driver_id == driver_id)
    if status:
        q = q.filter(CustomerReceivable.status == status)
    else:
        q = q.filter(CustomerReceivable.status.in_(OPEN_STATUSES))
    if receivable_type:
        q = q.filter(CustomerReceivable.receivable_type == receivable_type)

    rows = q.group_by(
        CustomerReceivable.driver_id,
        CustomerReceivable.customer_name,
        CustomerReceivable.receivable_type,
        CustomerReceivable.size,
    ).all()

    by_customer: dict[tuple[int, str], dict] = {}
    for drv, customer, rtype, size, count, amount, qty, earliest_due in rows:
        agg = by_customer.setdefault((drv, customer), {
            "driver_id": drv,
            "customer_name": customer,
            "receivable_count": 0,
            "cash_receivables_cents": 0,
            "cylinder_receivables": 0,
            "cylinder_receivables_by_size": {},
            "earliest_due_date": None,
        })
        agg["receivable_count"] += int(count)
        if rtype == "CASH":
            agg["cash_receivables_cents"] += int(amount)
        else:
            agg["cylinder_receivables"] += int(qty)
            by_size = agg["cylinder_receivables_by_size"]
            by_size[size] = by_size.get(size, 0) + int(qty)
        if earliest_due and (agg["earliest_due_date"] is None or earliest_due < agg["earliest_due_date"]):
            agg["earliest_due_date"] = earliest_due

    result = []
    for key in sorted(by_customer, key=lambda k: (k[0], k[1])):
        agg = by_customer[key]
        due = agg["earliest_due_date"]
        agg["earliest_due_date"] = due.isoformat() if due else None
        result.append(agg)
    return result


def reconcile_driver(org_id: int, driver_id: int) -> dict:
    """
    Compare a driver's latest ledger snapshot with the open customer items.

    The cash bound holds when open CURRENT cash <= snapshot cash total.
    """
    snapshot = LedgerRepository(db.session).get_latest_on_or_before(org_id, driver_id)
    ledger_cash = snapshot.total_cash_receivables_cents if snapshot else 0
    ledger_cylinders = snapshot.total_cylinder_receivables if snapshot else 0

    open_items = list_receivables(org_id, driver_id=driver_id, status="CURRENT")
    open_cash = sum(r.amount_cents for r in open_items if r.receivable_type == "CASH")
    open_by_size: dict[str, int] = {}
    for r in open_items:
        if r.receivable_type == "CYLINDER":
            open_by_size[r.size] = open_by_size.get(r.size, 0) + r.quantity
    open_cylinders = sum(open_by_size.values())

    return {
        "driver_id": driver_id,
        "ledger_date": snapshot.date.isoformat() if snapshot else None,
        "ledger_cash_cents": ledger_cash,
        "ledger_cylinders": ledger_cylinders,
        "open_cash_cents": open_cash,
        "open_cylinders": open_cylinders,
        "open_cylinders_by_size": open_by_size,
        "cash_difference_cents": ledger_cash - open_cash,
        "cylinder_difference": ledger_cylinders - open_cylinders,
        "cash_within_bound": open_cash <= ledger_cash,
        "cylinders_within_bound": open_cylinders <= ledger_cylinders,
    }
