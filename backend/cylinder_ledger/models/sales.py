from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date

class Settlement(db.Model):
    """
    Header for one multi-item customer transaction handled by one driver.

    IMMUTABLE: created once inside the settlement transaction; corrections
    are new offsetting records, never in-place edits.
    """
    __tablename__ = "settlements"
    __table_args__ = (
        db.Index("ix_settlements_org_driver_date", "org_id", "driver_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    payment_type = db.Column(db.String(16), nullable=False)  # CASH, CREDIT
    sale_date = db.Column(db.Date, nullable=False)

    # All amounts in cents
    total_value_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_value_cents = db.Column(db.Integer, nullable=False)
    cash_deposited_cents = db.Column(db.Integer, nullable=False, default=0)

    total_package_qty = db.Column(db.Integer, nullable=False, default=0)
    total_refill_qty = db.Column(db.Integer, nullable=False, default=0)
    total_cylinder_deposits = db.Column(db.Integer, nullable=False, default=0)
    # size label -> declared deposited empties
    cylinder_deposits = db.Column(db.JSON, nullable=False, default=dict)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    driver = db.relationship("Driver")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "driver_id": self.driver_id,
            "customer_name": self.customer_name,
            "payment_type": self.payment_type,
            "sale_date": to_iso_date(self.sale_date),
            "total_value_cents": self.total_value_cents,
            "discount_cents": self.discount_cents,
            "net_value_cents": self.net_value_cents,
            "cash_deposited_cents": self.cash_deposited_cents,
            "total_package_qty": self.total_package_qty,
            "total_refill_qty": self.total_refill_qty,
            "total_cylinder_deposits": self.total_cylinder_deposits,
            "cylinder_deposits": dict(self.cylinder_deposits or {}),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class SaleRecord(db.Model):
    """
    One row per (product, sale type) actually transacted in a settlement.

    PACKAGE rows never carry cylinders_deposited; a package sale hands over
    a new cylinder and expects no empty back.
    """
    __tablename__ = "sale_records"
    __table_args__ = (
        db.Index("ix_sale_records_org_driver_date", "org_id", "driver_id", "sale_date"),
        db.CheckConstraint("quantity > 0", name="ck_sale_records_quantity_positive"),
        db.CheckConstraint("cylinders_deposited >= 0", name="ck_sale_records_deposits_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    # Snapshot of the product's size at sale time
    cylinder_size_id = db.Column(db.Integer, db.ForeignKey("cylinder_sizes.id"), nullable=False)

    customer_name = db.Column(db.String(255), nullable=False)
    sale_type = db.Column(db.String(16), nullable=False)  # PACKAGE, REFILL
    sale_date = db.Column(db.Date, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_value_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_value_cents = db.Column(db.Integer, nullable=False)
    cash_deposited_cents = db.Column(db.Integer, nullable=False, default=0)
    cylinders_deposited = db.Column(db.Integer, nullable=False, default=0)

    inventory_transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    settlement = db.relationship("Settlement", backref=db.backref("sale_records", lazy=True, order_by="SaleRecord.id"))
    product = db.relationship("Product")
    cylinder_size = db.relationship("CylinderSize")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "settlement_id": self.settlement_id,
            "driver_id": self.driver_id,
            "product_id": self.product_id,
            "cylinder_size_id": self.cylinder_size_id,
            "size": self.cylinder_size.size if self.cylinder_size else None,
            "customer_name": self.customer_name,
            "sale_type": self.sale_type,
            "sale_date": to_iso_date(self.sale_date),
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_value_cents": self.total_value_cents,
            "discount_cents": self.discount_cents,
            "net_value_cents": self.net_value_cents,
            "cash_deposited_cents": self.cash_deposited_cents,
            "cylinders_deposited": self.cylinders_deposited,
            "inventory_transaction_id": self.inventory_transaction_id,
            "created_at": to_utc_z(self.created_at),
        }
