# Overview: Settlement write path; one ACID transaction per settlement, ledger rollup after commit.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, Settlement, SaleRecord
from ..time_utils import parse_business_date, utctoday
from ..validation import (
    InvalidSettlement,
    NotFound,
    coerce_int,
    optional_int,
    require_fields,
)
from . import customer_debt_service, inventory_service
from .audit_service import append_audit_event
from .concurrency import begin_write_transaction, run_with_retry
from .consistency_worker import get_worker
from .settlement_allocator import (
    DEFAULT_CUSTOMER_NAME,
    ProductRef,
    SettlementItem,
    SettlementRequest,
    allocate,
)
from .tenant_service import get_cylinder_sizes, require_driver_in_org
"""
Settlement Invariants (authoritative)

- Validation (quantities, prices, discount, sizes, products, stock) happens
  before any row is written; a rejected settlement leaves no trace.
- The stock check and the outbound movements share one transaction, opened
  with the write lock on SQLite, so stock cannot be oversold in between.
- Sale records, movements, empty-cylinder increments, customer receivables,
  the recompute task and the audit event commit together or not at all.
- The ledger snapshot is never touched here; the consistency worker picks up
  the task once the transaction has committed.
"""


def parse_settlement_payload(data: dict) -> SettlementRequest:
    """Turn a JSON body into a typed SettlementRequest; strict on numbers."""
    if not isinstance(data, dict):
        raise InvalidSettlement("Request body must be a JSON object", field="body")
    require_fields(data, ["driver_id", "items"])

    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidSettlement("At least one sale item is required", field="items")

    items = []
    for idx, raw in enumerate(raw_items):
        prefix = f"items[{idx}]"
        if not isinstance(raw, dict):
            raise InvalidSettlement("Each item must be an object", field=prefix)
        if raw.get("product_id") in (None, ""):
            raise InvalidSettlement("product_id is required", field=f"{prefix}.product_id")
        items.append(SettlementItem(
            product_id=coerce_int(raw.get("product_id"), f"{prefix}.product_id", minimum=1),
            package_qty=optional_int(raw.get("package_qty"), f"{prefix}.package_qty"),
            refill_qty=optional_int(raw.get("refill_qty"), f"{prefix}.refill_qty"),
            package_price_cents=optional_int(raw.get("package_price_cents"), f"{prefix}.package_price_cents"),
            refill_price_cents=optional_int(raw.get("refill_price_cents"), f"{prefix}.refill_price_cents"),
        ))

    raw_deposits = data.get("cylinder_deposits") or {}
    if not isinstance(raw_deposits, dict):
        raise InvalidSettlement("cylinder_deposits must map size to count", field="cylinder_deposits")
    deposits = {
        str(size).strip(): coerce_int(count, f"cylinder_deposits.{size}")
        for size, count in raw_deposits.items()
    }

    try:
        sale_date = parse_business_date(data.get("sale_date"))
    except ValueError:
        raise InvalidSettlement("sale_date must be YYYY-MM-DD or ISO-8601", field="sale_date")

    customer_name = (data.get("customer_name") or "").strip() or DEFAULT_CUSTOMER_NAME

    return SettlementRequest(
        driver_id=coerce_int(data.get("driver_id"), "driver_id", minimum=1),
        items=tuple(items),
        payment_type=str(data.get("payment_type") or "CASH").strip().upper(),
        customer_name=customer_name[:255],
        discount_cents=optional_int(data.get("discount_cents"), "discount_cents"),
        cash_deposited_cents=optional_int(data.get("cash_deposited_cents"), "cash_deposited_cents"),
        cylinder_deposits=deposits,
        sale_date=sale_date,
        notes=data.get("notes"),
    )


def _load_product_refs(org_id: int, product_ids: list[int]) -> dict[int, ProductRef]:
    if not product_ids:
        return {}
    products = (
        db.session.query(Product)
        .filter(Product.org_id == org_id, Product.id.in_(product_ids), Product.is_active.is_(True))
        .all()
    )
    return {
        p.id: ProductRef(
            product_id=p.id,
            cylinder_size_id=p.cylinder_size_id,
            size=p.cylinder_size.size,
            name=p.name,
        )
        for p in products
    }


def submit_settlement(org_id: int, request: SettlementRequest, *, created_by: str | None = None) -> dict:
    """
    Persist a settlement and hand its ledger key to the consistency worker.

    Raises InvalidSettlement, NotFound or InsufficientInventory with nothing
    written. The returned dict is built from committed rows.
    """

    def _write():
        begin_write_transaction()
        require_driver_in_org(request.driver_id, org_id)

        product_ids = sorted({item.product_id for item in request.items})
        refs = _load_product_refs(org_id, product_ids)
        sizes = get_cylinder_sizes(org_id)
        available = inventory_service.get_available_by_product(org_id, product_ids)

        result = allocate(request, refs, available, set(sizes))
        sale_date = request.sale_date or utctoday()

        settlement = Settlement(
            org_id=org_id,
            driver_id=request.driver_id,
            customer_name=request.customer_name,
            payment_type=request.payment_type,
            sale_date=sale_date,
            total_value_cents=result.total_value_cents,
            discount_cents=result.total_discount_cents,
            net_value_cents=result.net_value_cents,
            cash_deposited_cents=result.cash_deposited_cents,
            total_package_qty=result.total_package_qty,
            total_refill_qty=result.total_refill_qty,
            total_cylinder_deposits=result.total_cylinder_deposits,
            cylinder_deposits=dict(result.cylinder_deposits),
            notes=request.notes,
            created_by=created_by,
        )
        db.session.add(settlement)
        db.session.flush()

        records = []
        for sale in result.sales:
            movement = inventory_service.record_sale_movement(
                org_id=org_id,
                product_id=sale.product_id,
                sale_type=sale.sale_type,
                quantity=sale.quantity,
                settlement_id=settlement.id,
                driver_id=request.driver_id,
                note=f"Settlement #{settlement.id}",
            )
            record = SaleRecord(
                org_id=org_id,
                settlement_id=settlement.id,
                driver_id=request.driver_id,
                product_id=sale.product_id,
                cylinder_size_id=sale.cylinder_size_id,
                customer_name=request.customer_name,
                sale_type=sale.sale_type,
                sale_date=sale_date,
                quantity=sale.quantity,
                unit_price_cents=sale.unit_price_cents,
                total_value_cents=sale.total_value_cents,
                discount_cents=sale.discount_cents,
                net_value_cents=sale.net_value_cents,
                cash_deposited_cents=sale.cash_deposited_cents,
                cylinders_deposited=sale.cylinders_deposited,
                inventory_transaction_id=movement.id,
            )
            db.session.add(record)
            records.append(record)

            if sale.cylinder_shortfall > 0:
                inventory_service.increment_empty_cylinder_receivables(
                    org_id=org_id,
                    day=sale_date,
                    product_id=sale.product_id,
                    cylinder_size_id=sale.cylinder_size_id,
                    quantity=sale.cylinder_shortfall,
                )
        db.session.flush()

        receivables = customer_debt_service.create_for_settlement(
            settlement,
            cash_receivable_cents=result.cash_receivable_cents,
            cylinder_shortfall_by_size=result.cylinder_shortfall_by_size,
            sizes=sizes,
        )

        task = get_worker().enqueue(
            org_id=org_id,
            driver_id=request.driver_id,
            ledger_date=sale_date,
            reason="SETTLEMENT",
            settlement_id=settlement.id,
        )

        append_audit_event(
            org_id=org_id,
            event_type="SETTLEMENT_SUBMITTED",
            entity_type="settlement",
            entity_id=settlement.id,
            driver_id=request.driver_id,
            settlement_id=settlement.id,
            payload=result.summary(),
        )

        db.session.commit()
        return {
            "settlement_id": settlement.id,
            "settlement": settlement.to_dict(),
            "sale_records": [r.to_dict() for r in records],
            "customer_receivables": [r.to_dict() for r in receivables],
            "summary": result.summary(),
            "recompute_task_id": task.id,
            "_key": (org_id, request.driver_id, sale_date),
        }

    try:
        outcome = run_with_retry(_write)
    except Exception:
        db.session.rollback()
        raise

    key = outcome.pop("_key")
    try:
        get_worker().dispatch(key)
    except Exception:
        # The task row is durable; the poller or the next drain picks it up.
        current_app.logger.exception("Failed to dispatch ledger recompute for settlement %s", outcome["settlement_id"])
    return outcome


def get_settlement(org_id: int, settlement_id: int) -> Settlement:
    settlement = db.session.query(Settlement).filter_by(id=settlement_id, org_id=org_id).first()
    if settlement is None:
        raise NotFound("Settlement not found", details={"field": "settlement_id", "settlement_id": settlement_id})
    return settlement


def settlement_detail(org_id: int, settlement_id: int) -> dict:
    settlement = get_settlement(org_id, settlement_id)
    return {
        "settlement": settlement.to_dict(),
        "sale_records": [r.to_dict() for r in settlement.sale_records],
        "customer_receivables": [
            r.to_dict() for r in customer_debt_service.list_receivables(org_id, settlement_id=settlement.id)
        ],
    }
