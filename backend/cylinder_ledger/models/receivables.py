from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from ..validation import LedgerError


class ReceivableRecord(db.Model):
    """
    Per-(tenant, driver, date) snapshot of what the driver owes.

    INVARIANTS:
    - Exactly one row per (org_id, driver_id, date) (uq_receivable_records_key).
    - total(d) == total(previous snapshot) + change(d); with no previous
      snapshot, total(d) == change(d).
    - Written only by the consistency worker (and the onboarding seeder for
      the day-zero row). opening_* columns hold onboarding balances and
      survive every recompute of that key.
    - version_id gives compare-and-swap on concurrent read-modify-write.
    """
    __tablename__ = "receivable_records"
    __table_args__ = (
        db.UniqueConstraint("org_id", "driver_id", "date", name="uq_receivable_records_key"),
        db.Index("ix_receivable_records_driver_date", "org_id", "driver_id", "date"),
        db.CheckConstraint("total_cash_receivables_cents >= 0", name="ck_receivable_records_cash_nonneg"),
        db.CheckConstraint("total_cylinder_receivables >= 0", name="ck_receivable_records_cyl_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)

    cash_receivables_change_cents = db.Column(db.Integer, nullable=False, default=0)
    cylinder_receivables_change = db.Column(db.Integer, nullable=False, default=0)
    total_cash_receivables_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cylinder_receivables = db.Column(db.Integer, nullable=False, default=0)
    # size label -> that day's cylinder change
    cylinder_changes_by_size = db.Column(db.JSON, nullable=False, default=dict)

    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    opening_cylinders = db.Column(db.Integer, nullable=False, default=0)

    calculated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    driver = db.relationship("Driver", backref=db.backref("receivable_records", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "driver_id": self.driver_id,
            "date": to_iso_date(self.date),
            "cash_receivables_change_cents": self.cash_receivables_change_cents,
            "cylinder_receivables_change": self.cylinder_receivables_change,
            "total_cash_receivables_cents": self.total_cash_receivables_cents,
            "total_cylinder_receivables": self.total_cylinder_receivables,
            "cylinder_changes_by_size": dict(self.cylinder_changes_by_size or {}),
            "opening_cash_cents": self.opening_cash_cents,
            "opening_cylinders": self.opening_cylinders,
            "calculated_at": to_utc_z(self.calculated_at),
            "version_id": self.version_id,
        }


class CustomerReceivable(db.Model):
    """
    Open balance attributed to one customer of one driver.

    RECEIVABLE TYPES:
    - CASH: amount_cents owed
    - CYLINDER: quantity of empties owed for one cylinder size

    STATUS: CURRENT, OVERDUE, PAID. The settlement engine only creates rows
    (status CURRENT); collection and status changes belong to the payment
    collection screens.
    """
    __tablename__ = "customer_receivables"
    __table_args__ = (
        db.Index("ix_customer_receivables_org_driver_status", "org_id", "driver_id", "status"),
        db.Index("ix_customer_receivables_org_customer", "org_id", "customer_name"),
        db.CheckConstraint("amount_cents >= 0", name="ck_customer_receivables_amount_nonneg"),
        db.CheckConstraint("quantity >= 0", name="ck_customer_receivables_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False, index=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    receivable_type = db.Column(db.String(16), nullable=False)  # CASH, CYLINDER
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    cylinder_size_id = db.Column(db.Integer, db.ForeignKey("cylinder_sizes.id"), nullable=True)
    size = db.Column(db.String(32), nullable=True)

    due_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="CURRENT", index=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    driver = db.relationship("Driver")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "driver_id": self.driver_id,
            "settlement_id": self.settlement_id,
            "customer_name": self.customer_name,
            "receivable_type": self.receivable_type,
            "amount_cents": self.amount_cents,
            "quantity": self.quantity,
            "cylinder_size_id": self.cylinder_size_id,
            "size": self.size,
            "due_date": to_iso_date(self.due_date),
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class DriverCylinderSizeBaseline(db.Model):
    """
    Permanent onboarding anchor: a driver's starting debt for one size.

    IMMUTABLE: created once by the onboarding seeder; updates and deletes
    are rejected at flush time.
    """
    __tablename__ = "driver_cylinder_size_baselines"
    __table_args__ = (
        db.UniqueConstraint("driver_id", "cylinder_size_id", name="uq_baselines_driver_size"),
        db.CheckConstraint("baseline_quantity > 0", name="ck_baselines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False, index=True)
    cylinder_size_id = db.Column(db.Integer, db.ForeignKey("cylinder_sizes.id"), nullable=False)

    baseline_quantity = db.Column(db.Integer, nullable=False)
    source = db.Column(db.String(16), nullable=False, default="ONBOARDING")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder_size = db.relationship("CylinderSize")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "driver_id": self.driver_id,
            "cylinder_size_id": self.cylinder_size_id,
            "size": self.cylinder_size.size if self.cylinder_size else None,
            "baseline_quantity": self.baseline_quantity,
            "source": self.source,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(DriverCylinderSizeBaseline, "before_update")
def _reject_baseline_update(mapper, connection, target):
    raise LedgerError(
        "Onboarding baselines are immutable",
        details={"baseline_id": target.id, "driver_id": target.driver_id},
    )


@event.listens_for(DriverCylinderSizeBaseline, "before_delete")
def _reject_baseline_delete(mapper, connection, target):
    raise LedgerError(
        "Onboarding baselines cannot be deleted",
        details={"baseline_id": target.id, "driver_id": target.driver_id},
    )
