"""
Settlement Allocator - splits one multi-item settlement into sale records.

Pure: no database access. Callers hand in the tenant's product references,
the tenant's known cylinder sizes and the available full-cylinder counts.

ALLOCATION RULES:
- Gross per sub-item = quantity * unit price (cents).
- Discount is apportioned to lines by share of total gross, then inside a
  line between PACKAGE and REFILL by share of the line's gross.
- Cash deposited is apportioned to sub-items by share of total net value;
  sub-items with zero net receive zero.
- Cylinder deposits are matched by size, in request order: a refill
  sub-item takes min(its refill quantity, what is left of that size's
  declared deposit). PACKAGE sub-items never take deposits.
- Every split uses largest-remainder rounding on integer cents, so the parts
  always add up to the whole.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from ..validation import InvalidSettlement, InsufficientInventory, NotFound, coerce_int

PAYMENT_TYPES = ("CASH", "CREDIT", "CYLINDER_CREDIT", "BANK_TRANSFER", "MFS")
DEFAULT_CUSTOMER_NAME = "Walk-in Customer"


@dataclass(frozen=True)
class SettlementItem:
    product_id: int
    package_qty: int = 0
    refill_qty: int = 0
    package_price_cents: int = 0
    refill_price_cents: int = 0

    @property
    def total_qty(self) -> int:
        return self.package_qty + self.refill_qty


@dataclass(frozen=True)
class SettlementRequest:
    driver_id: int
    items: tuple[SettlementItem, ...]
    payment_type: str
    customer_name: str = DEFAULT_CUSTOMER_NAME
    discount_cents: int = 0
    cash_deposited_cents: int = 0
    cylinder_deposits: dict[str, int] = field(default_factory=dict)
    sale_date: date | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ProductRef:
    """What the allocator needs to know about a product."""
    product_id: int
    cylinder_size_id: int
    size: str
    name: str = ""


@dataclass
class SaleAllocation:
    product_id: int
    cylinder_size_id: int
    size: str
    sale_type: str  # PACKAGE, REFILL
    quantity: int
    unit_price_cents: int
    total_value_cents: int
    discount_cents: int = 0
    net_value_cents: int = 0
    cash_deposited_cents: int = 0
    cylinders_deposited: int = 0

    @property
    def cylinder_shortfall(self) -> int:
        if self.sale_type != "REFILL":
            return 0
        return self.quantity - self.cylinders_deposited


@dataclass
class AllocationResult:
    sales: list[SaleAllocation]
    total_value_cents: int
    total_discount_cents: int
    net_value_cents: int
    cash_deposited_cents: int
    total_package_qty: int
    total_refill_qty: int
    total_cylinder_deposits: int
    cylinder_deposits: dict[str, int]

    @property
    def cash_receivable_cents(self) -> int:
        """Uncollected cash for this settlement; overpayment floors at zero."""
        return max(0, self.net_value_cents - self.cash_deposited_cents)

    @property
    def refill_by_size(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for sale in self.sales:
            if sale.sale_type == "REFILL":
                totals[sale.size] = totals.get(sale.size, 0) + sale.quantity
        return totals

    @property
    def cylinder_shortfall_by_size(self) -> dict[str, int]:
        """Empties still owed per size; excess deposits never go negative."""
        shortfall = {}
        for size, refill_qty in self.refill_by_size.items():
            owed = refill_qty - self.cylinder_deposits.get(size, 0)
            if owed > 0:
                shortfall[size] = owed
        return shortfall

    def summary(self) -> dict:
        return {
            "total_items": len(self.sales),
            "total_value_cents": self.total_value_cents,
            "total_discount_cents": self.total_discount_cents,
            "net_value_cents": self.net_value_cents,
            "cash_deposited_cents": self.cash_deposited_cents,
            "total_package_qty": self.total_package_qty,
            "total_refill_qty": self.total_refill_qty,
            "total_cylinder_deposits": self.total_cylinder_deposits,
            "cylinder_deposits_by_size": dict(self.cylinder_deposits),
            "cash_receivable_cents": self.cash_receivable_cents,
            "cylinder_receivables_by_size": self.cylinder_shortfall_by_size,
        }


def apportion(total: int, weights: list[int]) -> list[int]:
    """
    Split a non-negative integer total proportionally to weights.

    Largest-remainder method: floors first, then the leftover units go to the
    largest fractional parts (ties to the earliest). Zero weights get zero;
    the result always sums to total when any weight is positive.
    """
    if total <= 0 or not weights:
        return [0] * len(weights)
    weight_sum = sum(weights)
    if weight_sum <= 0:
        return [0] * len(weights)

    raw = [total * w for w in weights]
    shares = [r // weight_sum for r in raw]
    leftover = total - sum(shares)
    order = sorted(range(len(weights)), key=lambda i: (-(raw[i] % weight_sum), i))
    for i in order[:leftover]:
        shares[i] += 1
    return shares


def _validate_items(request: SettlementRequest) -> None:
    if not request.items:
        raise InvalidSettlement("At least one sale item is required", field="items")

    seen: set[int] = set()
    for idx, item in enumerate(request.items):
        prefix = f"items[{idx}]"
        coerce_int(item.package_qty, f"{prefix}.package_qty")
        coerce_int(item.refill_qty, f"{prefix}.refill_qty")
        coerce_int(item.package_price_cents, f"{prefix}.package_price_cents")
        coerce_int(item.refill_price_cents, f"{prefix}.refill_price_cents")

        if item.package_qty > 0 and item.package_price_cents <= 0:
            raise InvalidSettlement(
                "Price must be greater than 0 when quantity is specified",
                field=f"{prefix}.package_price_cents",
            )
        if item.refill_qty > 0 and item.refill_price_cents <= 0:
            raise InvalidSettlement(
                "Price must be greater than 0 when quantity is specified",
                field=f"{prefix}.refill_price_cents",
            )
        if item.product_id in seen:
            raise InvalidSettlement(
                "Each product may appear only once per settlement",
                field=f"{prefix}.product_id",
            )
        seen.add(item.product_id)

    if request.payment_type not in PAYMENT_TYPES:
        raise InvalidSettlement(
            f"payment_type must be one of {', '.join(PAYMENT_TYPES)}",
            field="payment_type",
        )
    coerce_int(request.discount_cents, "discount_cents")
    coerce_int(request.cash_deposited_cents, "cash_deposited_cents")


def _validate_deposits(deposits: dict[str, int], known_sizes: set[str]) -> dict[str, int]:
    cleaned: dict[str, int] = {}
    for size, count in (deposits or {}).items():
        qty = coerce_int(count, f"cylinder_deposits.{size}")
        if size not in known_sizes:
            raise InvalidSettlement(
                f"Unknown cylinder size {size!r}",
                details={"field": "cylinder_deposits", "reason": "unknown size", "size": size},
            )
        if qty > 0:
            cleaned[size] = qty
    return cleaned


def check_inventory(request: SettlementRequest, available: dict[int, int], products: dict[int, ProductRef]) -> None:
    """Reject the whole settlement when any product lacks full cylinders."""
    insufficient = []
    for item in request.items:
        requested = item.total_qty
        if requested <= 0:
            continue
        on_hand = available.get(item.product_id, 0)
        if on_hand < requested:
            ref = products.get(item.product_id)
            insufficient.append({
                "product_id": item.product_id,
                "product_name": ref.name if ref else None,
                "requested_quantity": requested,
                "available": on_hand,
            })
    if insufficient:
        raise InsufficientInventory(
            "Insufficient inventory for settlement",
            details={"field": "items", "items": insufficient},
        )


def allocate(
    request: SettlementRequest,
    products: dict[int, ProductRef],
    available: dict[int, int],
    known_sizes: set[str],
) -> AllocationResult:
    """
    Validate a settlement and split it into per-(product, sale type) records.

    Raises InvalidSettlement, NotFound or InsufficientInventory before any
    numbers are produced.
    """
    _validate_items(request)

    referenced = [item.product_id for item in request.items if item.product_id]
    if not referenced:
        raise InvalidSettlement("No valid products selected", field="items")
    missing = sorted({pid for pid in referenced if pid not in products})
    if missing:
        raise NotFound(
            "Some products not found or inactive",
            details={"field": "items", "missing_ids": missing},
        )

    lines = [item for item in request.items if item.total_qty > 0]
    line_gross = [
        (item.package_qty * item.package_price_cents, item.refill_qty * item.refill_price_cents)
        for item in lines
    ]
    total_value = sum(pkg + ref for pkg, ref in line_gross)
    if total_value <= 0:
        raise InvalidSettlement(
            "Total sale value must be greater than 0. Please check quantities and prices.",
            field="items",
        )

    discount = request.discount_cents
    net_value = total_value - discount
    if net_value < 0:
        raise InvalidSettlement("Discount cannot exceed total sale value.", field="discount_cents")

    deposits = _validate_deposits(request.cylinder_deposits, known_sizes)
    check_inventory(request, available, products)

    line_discounts = apportion(discount, [pkg + ref for pkg, ref in line_gross])

    sales: list[SaleAllocation] = []
    for item, (pkg_gross, ref_gross), line_discount in zip(lines, line_gross, line_discounts):
        ref = products[item.product_id]
        pkg_discount, ref_discount = apportion(line_discount, [pkg_gross, ref_gross])
        if item.package_qty > 0:
            sales.append(SaleAllocation(
                product_id=item.product_id,
                cylinder_size_id=ref.cylinder_size_id,
                size=ref.size,
                sale_type="PACKAGE",
                quantity=item.package_qty,
                unit_price_cents=item.package_price_cents,
                total_value_cents=pkg_gross,
                discount_cents=pkg_discount,
                net_value_cents=pkg_gross - pkg_discount,
            ))
        if item.refill_qty > 0:
            sales.append(SaleAllocation(
                product_id=item.product_id,
                cylinder_size_id=ref.cylinder_size_id,
                size=ref.size,
                sale_type="REFILL",
                quantity=item.refill_qty,
                unit_price_cents=item.refill_price_cents,
                total_value_cents=ref_gross,
                discount_cents=ref_discount,
                net_value_cents=ref_gross - ref_discount,
            ))

    cash_shares = apportion(request.cash_deposited_cents, [s.net_value_cents for s in sales])
    for sale, cash in zip(sales, cash_shares):
        sale.cash_deposited_cents = cash

    remaining = dict(deposits)
    for sale in sales:
        if sale.sale_type != "REFILL":
            continue
        matched = min(sale.quantity, remaining.get(sale.size, 0))
        sale.cylinders_deposited = matched
        if matched:
            remaining[sale.size] -= matched

    return AllocationResult(
        sales=sales,
        total_value_cents=total_value,
        total_discount_cents=discount,
        net_value_cents=net_value,
        cash_deposited_cents=request.cash_deposited_cents,
        total_package_qty=sum(item.package_qty for item in lines),
        total_refill_qty=sum(item.refill_qty for item in lines),
        total_cylinder_deposits=sum(deposits.values()),
        cylinder_deposits=deposits,
    )
