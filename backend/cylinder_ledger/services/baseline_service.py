# Overview: Baseline Seeder; one-time onboarding of opening driver balances and stock.

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..models import DriverCylinderSizeBaseline, Organization, Product
from ..time_utils import parse_business_date, previous_day, utcnow, utctoday
from ..validation import DuplicateBaselineSeed, InvalidSettlement, NotFound, coerce_int, optional_int
from . import customer_debt_service, inventory_service
from .audit_service import append_audit_event
from .concurrency import begin_write_transaction, lock_for_update
from .consistency_worker import get_worker
from .ledger_repository import LedgerRepository
from .receivables_service import ReceivablesService
from .tenant_service import get_active_products, get_cylinder_sizes, require_driver_in_org
"""
Onboarding Baseline Invariants (authoritative)

- Runs once per tenant. Organization.onboarding_completed_at is the guard;
  any later call raises DuplicateBaselineSeed and writes nothing.
- One baseline row per (driver, size) with quantity > 0, never updated or
  deleted (mapper events reject both; the table is unique on driver/size).
- Opening balances land on a day-zero snapshot dated the day before
  onboarding, so day one has a well-defined previous total and never counts
  them as a same-day change.
- Open "Onboarding Balance" customer receivables mirror the opening figures
  so the reconciliation report starts even.
"""


def _parse_driver_entries(entries, sizes: dict) -> list[dict]:
    if not isinstance(entries, list):
        raise InvalidSettlement("drivers must be a list", field="drivers")

    parsed = []
    seen: set[int] = set()
    for idx, raw in enumerate(entries):
        prefix = f"drivers[{idx}]"
        if not isinstance(raw, dict):
            raise InvalidSettlement("Each driver entry must be an object", field=prefix)
        driver_id = coerce_int(raw.get("driver_id"), f"{prefix}.driver_id", minimum=1)
        if driver_id in seen:
            raise InvalidSettlement("Driver listed more than once", field=f"{prefix}.driver_id")
        seen.add(driver_id)

        cylinders = raw.get("cylinders") or {}
        if not isinstance(cylinders, dict):
            raise InvalidSettlement("cylinders must map size to count", field=f"{prefix}.cylinders")
        by_size = {}
        for size, qty in cylinders.items():
            size = str(size).strip()
            if size not in sizes:
                raise NotFound(
                    f"Unknown cylinder size {size!r}",
                    details={"field": f"{prefix}.cylinders", "size": size},
                )
            count = coerce_int(qty, f"{prefix}.cylinders.{size}")
            if count > 0:
                by_size[size] = count

        parsed.append({
            "driver_id": driver_id,
            "opening_cash_cents": optional_int(raw.get("opening_cash_cents"), f"{prefix}.opening_cash_cents"),
            "cylinders": by_size,
        })
    return parsed


def _parse_stock(entries) -> list[dict]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise InvalidSettlement("stock must be a list", field="stock")
    stock = []
    for idx, raw in enumerate(entries):
        prefix = f"stock[{idx}]"
        if not isinstance(raw, dict):
            raise InvalidSettlement("Each stock entry must be an object", field=prefix)
        stock.append({
            "product_id": coerce_int(raw.get("product_id"), f"{prefix}.product_id", minimum=1),
            "quantity": coerce_int(raw.get("quantity"), f"{prefix}.quantity", minimum=1),
        })
    return stock


def _representative_products(org_id: int, size_ids: set[int]) -> dict[int, int]:
    """Lowest-id active product per size; day-zero empties are booked against it."""
    rows = (
        db.session.query(Product.cylinder_size_id, db.func.min(Product.id))
        .filter(Product.org_id == org_id, Product.is_active.is_(True), Product.cylinder_size_id.in_(size_ids))
        .group_by(Product.cylinder_size_id)
        .all()
    )
    return {size_id: product_id for size_id, product_id in rows}


def seed_onboarding(org_id: int, payload: dict, *, as_of: date | None = None) -> dict:
    """
    Seed opening balances for a tenant. Commits on success.

    payload:
        onboarding_date: "YYYY-MM-DD" (defaults to today)
        drivers: [{driver_id, opening_cash_cents, cylinders: {size: qty}}]
        stock:   [{product_id, quantity}]  optional opening full cylinders
    """
    payload = payload or {}
    try:
        onboarding_date = parse_business_date(payload.get("onboarding_date")) or as_of or utctoday()
    except ValueError:
        raise InvalidSettlement("onboarding_date must be YYYY-MM-DD", field="onboarding_date")
    day_zero = previous_day(onboarding_date)

    try:
        begin_write_transaction()
        org = lock_for_update(db.session.query(Organization).filter_by(id=org_id)).first()
        if org is None:
            raise NotFound("Organization not found", details={"field": "org_id", "org_id": org_id})
        if org.onboarding_completed:
            raise DuplicateBaselineSeed(
                "Onboarding already completed for this organization",
                details={"org_id": org_id, "completed_at": org.onboarding_completed_at.isoformat()},
            )

        sizes = get_cylinder_sizes(org_id)
        drivers = _parse_driver_entries(payload.get("drivers") or [], sizes)
        stock = _parse_stock(payload.get("stock"))
        for entry in drivers:
            require_driver_in_org(entry["driver_id"], org_id)
        if stock:
            get_active_products([s["product_id"] for s in stock], org_id)

        existing = (
            db.session.query(DriverCylinderSizeBaseline)
            .filter(
                DriverCylinderSizeBaseline.org_id == org_id,
                DriverCylinderSizeBaseline.driver_id.in_([d["driver_id"] for d in drivers] or [0]),
            )
            .first()
        )
        if existing is not None:
            raise DuplicateBaselineSeed(
                "Baseline already exists for driver and cylinder size",
                details={"driver_id": existing.driver_id, "cylinder_size_id": existing.cylinder_size_id},
            )

        size_ids = {sizes[s].id for d in drivers for s in d["cylinders"]}
        rep_products = _representative_products(org_id, size_ids) if size_ids else {}
        ledger = ReceivablesService(LedgerRepository(db.session))

        baselines = []
        snapshots = []
        follow_ups = []
        for entry in drivers:
            driver_id = entry["driver_id"]
            for size, qty in sorted(entry["cylinders"].items()):
                size_row = sizes[size]
                baseline = DriverCylinderSizeBaseline(
                    org_id=org_id,
                    driver_id=driver_id,
                    cylinder_size_id=size_row.id,
                    baseline_quantity=qty,
                    source="ONBOARDING",
                )
                db.session.add(baseline)
                baselines.append(baseline)

                product_id = rep_products.get(size_row.id)
                if product_id is None:
                    current_app.logger.warning(
                        "No active product for size %s; day-zero empties not booked on inventory", size,
                    )
                else:
                    inventory_service.increment_empty_cylinder_receivables(
                        org_id=org_id,
                        day=day_zero,
                        product_id=product_id,
                        cylinder_size_id=size_row.id,
                        quantity=qty,
                    )

            if entry["opening_cash_cents"] > 0 or entry["cylinders"]:
                snapshots.append(ledger.seed_opening(
                    org_id, driver_id, day_zero,
                    cash_cents=entry["opening_cash_cents"],
                    cylinders_by_size=entry["cylinders"],
                ))
                customer_debt_service.create_opening_balance(
                    org_id=org_id,
                    driver_id=driver_id,
                    day=onboarding_date,
                    cash_cents=entry["opening_cash_cents"],
                    cylinders_by_size=entry["cylinders"],
                    sizes=sizes,
                )
                later = ledger.repository.get_next_after(org_id, driver_id, day_zero)
                if later is not None:
                    get_worker().enqueue(
                        org_id=org_id, driver_id=driver_id, ledger_date=later.date, reason="PROPAGATION",
                    )
                    follow_ups.append((org_id, driver_id, later.date))

        movements = [
            inventory_service.receive_inventory(
                org_id=org_id,
                product_id=s["product_id"],
                quantity=s["quantity"],
                tx_type="ONBOARDING",
                note="Opening stock",
                commit=False,
            )
            for s in stock
        ]
        db.session.flush()

        org.onboarding_completed_at = utcnow()
        append_audit_event(
            org_id=org_id,
            event_type="BASELINES_SEEDED",
            entity_type="organization",
            entity_id=org_id,
            payload={
                "onboarding_date": onboarding_date.isoformat(),
                "day_zero": day_zero.isoformat(),
                "drivers": len(drivers),
                "baselines": len(baselines),
                "stock_movements": len(movements),
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    for key in follow_ups:
        get_worker().dispatch(key)

    current_app.logger.info(
        "Onboarding seeded org=%s drivers=%s baselines=%s", org_id, len(drivers), len(baselines),
    )
    return {
        "org_id": org_id,
        "onboarding_date": onboarding_date.isoformat(),
        "day_zero": day_zero.isoformat(),
        "baselines": [b.to_dict() for b in baselines],
        "snapshots": [s.to_dict() for s in snapshots],
        "stock_movements": [m.to_dict() for m in movements],
    }


def list_baselines(org_id: int, driver_id: int | None = None) -> list[DriverCylinderSizeBaseline]:
    q = db.session.query(DriverCylinderSizeBaseline).filter(DriverCylinderSizeBaseline.org_id == org_id)
    if driver_id is not None:
        q = q.filter(DriverCylinderSizeBaseline.driver_id == driver_id)
    return q.order_by(DriverCylinderSizeBaseline.driver_id, DriverCylinderSizeBaseline.cylinder_size_id).all()
