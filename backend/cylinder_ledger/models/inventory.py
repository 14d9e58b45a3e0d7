from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class InventoryTransaction(db.Model):
    """
    Append-only full-cylinder movement ledger.

    Available stock is SUM(quantity_delta) per product; it is never stored
    as a mutable quantity field.

    TYPES:
    - RECEIVE: stock arriving (positive)
    - ONBOARDING: opening stock declared at onboarding (positive)
    - SALE_PACKAGE / SALE_REFILL: cylinders leaving with a settlement (negative)
    - ADJUST: manual correction (either sign)
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_inventory_tx_org_product", "org_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=True, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=True, index=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "note": self.note,
            "settlement_id": self.settlement_id,
            "driver_id": self.driver_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


class InventoryRecord(db.Model):
    """
    Daily per-(product, cylinder size) inventory view.

    empty_cylinder_receivables counts empties owed back for that size,
    independent of which driver owes them. It only ever grows by increments
    (onboarding baselines and new refill shortfalls).
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint(
            "org_id", "date", "product_id", "cylinder_size_id",
            name="uq_inventory_records_org_date_product_size",
        ),
        db.CheckConstraint("empty_cylinder_receivables >= 0", name="ck_inventory_records_receivables_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    cylinder_size_id = db.Column(db.Integer, db.ForeignKey("cylinder_sizes.id"), nullable=False)

    empty_cylinder_receivables = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    cylinder_size = db.relationship("CylinderSize")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "date": to_iso_date(self.date),
            "product_id": self.product_id,
            "cylinder_size_id": self.cylinder_size_id,
            "size": self.cylinder_size.size if self.cylinder_size else None,
            "empty_cylinder_receivables": self.empty_cylinder_receivables,
            "version_id": self.version_id,
        }
