from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Driver(db.Model):
    """
    Driver master data (owned by the tenant CRUD screens; read-only here).

    MULTI-TENANT: Drivers are scoped to organizations via org_id.
    A driver owns its ledger snapshots and onboarding baselines.
    """
    __tablename__ = "drivers"
    __table_args__ = (
        db.Index("ix_drivers_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    driver_type = db.Column(db.String(16), nullable=False, default="RETAIL")  # RETAIL, SHIPMENT
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("drivers", lazy=True))

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"

    def __repr__(self) -> str:
        return f"<Driver id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "phone": self.phone,
            "driver_type": self.driver_type,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class CylinderSize(db.Model):
    """
    Tenant-defined cylinder size (e.g. "12L", "35KG").

    Deposits and cylinder receivables are matched by size, never by product.
    """
    __tablename__ = "cylinder_sizes"
    __table_args__ = (
        db.UniqueConstraint("org_id", "size", name="uq_cylinder_sizes_org_size"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    size = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<CylinderSize id={self.id} size={self.size!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "size": self.size,
            "description": self.description,
            "is_active": self.is_active,
        }


class Product(db.Model):
    """
    Product master data: one gas product in one cylinder size.

    Prices are not read from here; every settlement line carries its own
    unit prices.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    cylinder_size_id = db.Column(db.Integer, db.ForeignKey("cylinder_sizes.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder_size = db.relationship("CylinderSize")

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "cylinder_size_id": self.cylinder_size_id,
            "size": self.cylinder_size.size if self.cylinder_size else None,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
