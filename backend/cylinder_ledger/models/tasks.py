from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class RecomputeTask(db.Model):
    """
    Durable ledger recompute request for one (org, driver, date) key.

    STATE MACHINE: PENDING -> RUNNING -> DONE, or RUNNING -> FAILED -> PENDING
    (retry after next_attempt_at). A FAILED row whose attempts reached the
    configured maximum stays FAILED and is reported as an operational alert.

    Rows are written inside the transaction that caused them, so a task
    exists if and only if its settlement committed. id order is commit
    order for a key.
    """
    __tablename__ = "recompute_tasks"
    __table_args__ = (
        db.Index("ix_recompute_tasks_key_status", "org_id", "driver_id", "ledger_date", "status"),
        db.Index("ix_recompute_tasks_status_next", "status", "next_attempt_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False, index=True)
    ledger_date = db.Column(db.Date, nullable=False)

    reason = db.Column(db.String(32), nullable=False, default="SETTLEMENT")  # SETTLEMENT, PROPAGATION, MANUAL
    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    next_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "driver_id": self.driver_id,
            "ledger_date": to_iso_date(self.ledger_date),
            "reason": self.reason,
            "settlement_id": self.settlement_id,
            "status": self.status,
            "attempts": self.attempts,
            "next_attempt_at": to_utc_z(self.next_attempt_at),
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
        }
