# backend/cylinder_ledger/routes/system.py
"""
System health endpoint.

Reports database reachability and the ledger worker backlog.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Organization, RecomputeTask
from ..services.consistency_worker import pending_task_count
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        org_count = db.session.query(Organization).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"organizations": org_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_ledger_worker_health() -> dict:
    """
    Backlog of recompute tasks. Tasks that gave up after the last retry make
    the check degraded; the ledger lags but sales keep working.
    """
    try:
        max_attempts = current_app.config.get("LEDGER_RECOMPUTE_MAX_ATTEMPTS", 5)
        exhausted = db.session.query(RecomputeTask).filter(
            RecomputeTask.status == "FAILED",
            RecomputeTask.attempts >= max_attempts,
        ).count()
        retrying = db.session.query(RecomputeTask).filter(
            RecomputeTask.status == "FAILED",
            RecomputeTask.attempts < max_attempts,
        ).count()
        return {
            "status": "degraded" if exhausted else "healthy",
            "details": {
                "pending": pending_task_count(),
                "retrying": retrying,
                "exhausted": exhausted,
                "eager": bool(current_app.config.get("LEDGER_WORKER_EAGER")),
            },
        }
    except Exception:
        current_app.logger.exception("Ledger worker health check failed")
        return {"status": "unhealthy", "error": "Ledger worker error"}


@system_bp.get("/health")
def health():
    """
    200 when healthy or degraded, 503 when a dependency is unhealthy.
    """
    start_time = time.time()
    database_health = check_database_health()
    worker_health = check_ledger_worker_health()

    all_checks = [database_health, worker_health]
    if any(c["status"] == "unhealthy" for c in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(c["status"] == "degraded" for c in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "ledger_worker": worker_health,
        },
    }, http_status
