# Overview: Flask API routes for driver and customer receivables; read views plus manual recompute.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_tenant
from ..services import customer_debt_service, inventory_service
from ..services.consistency_worker import get_worker
from ..services.ledger_repository import LedgerRepository
from ..services.receivables_service import ReceivablesService
from ..services.tenant_service import require_driver_in_org
from ..time_utils import parse_business_date, utctoday
from ..validation import InvalidSettlement, LedgerError, coerce_int, require_fields


receivables_bp = Blueprint("receivables", __name__, url_prefix="/api/receivables")


def _service() -> ReceivablesService:
    return ReceivablesService(LedgerRepository(db.session))


def _date_arg(name: str):
    try:
        return parse_business_date(request.args.get(name))
    except ValueError:
        raise InvalidSettlement(f"{name} must be YYYY-MM-DD", field=name)


@receivables_bp.get("/drivers/<int:driver_id>")
@require_tenant
def driver_snapshot_route(driver_id: int):
    """Latest ledger snapshot on or before ?date= (all zeros when none)."""
    try:
        require_driver_in_org(driver_id, g.org_id, require_active=False)
        snapshot = _service().get_snapshot(g.org_id, driver_id, _date_arg("date"))
        return jsonify({"snapshot": snapshot}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load ledger snapshot")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.get("/drivers/<int:driver_id>/history")
@require_tenant
def driver_history_route(driver_id: int):
    try:
        require_driver_in_org(driver_id, g.org_id, require_active=False)
        history = _service().history(g.org_id, driver_id, _date_arg("start_date"), _date_arg("end_date"))
        return jsonify({"driver_id": driver_id, "history": history}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load ledger history")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.get("/drivers/<int:driver_id>/reconciliation")
@require_tenant
def driver_reconciliation_route(driver_id: int):
    try:
        require_driver_in_org(driver_id, g.org_id, require_active=False)
        return jsonify(customer_debt_service.reconcile_driver(g.org_id, driver_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reconcile driver receivables")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.get("/summary")
@require_tenant
def summary_route():
    try:
        return jsonify(_service().summary(g.org_id, _date_arg("date"))), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build receivables summary")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.get("/customers")
@require_tenant
def customers_route():
    """Open customer receivables grouped by (driver, customer)."""
    try:
        driver_id = request.args.get("driver_id")
        status = (request.args.get("status") or "").strip().upper() or None
        receivable_type = (request.args.get("receivable_type") or "").strip().upper() or None

        if status and status not in customer_debt_service.RECEIVABLE_STATUSES:
            raise InvalidSettlement("Unknown status", field="status")
        if receivable_type and receivable_type not in customer_debt_service.RECEIVABLE_TYPES:
            raise InvalidSettlement("Unknown receivable_type", field="receivable_type")

        customers = customer_debt_service.get_customer_aggregations(
            g.org_id,
            driver_id=coerce_int(driver_id, "driver_id", minimum=1) if driver_id else None,
            status=status,
            receivable_type=receivable_type,
        )
        return jsonify({"customers": customers}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to aggregate customer receivables")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.get("/cylinder-sizes")
@require_tenant
def cylinder_sizes_route():
    """Empty cylinders owed back per size, across drivers."""
    try:
        as_of = _date_arg("date")
        by_size = inventory_service.get_empty_cylinder_receivables_by_size(g.org_id, as_of)
        return jsonify({
            "as_of": as_of.isoformat() if as_of else None,
            "empty_cylinder_receivables": by_size,
            "total": sum(by_size.values()),
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cylinder size receivables")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.post("/recompute")
@require_tenant
def recompute_route():
    """
    Queue a manual recompute for {driver_id, date}.

    202: the task is durable; the worker runs it after commit.
    """
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, ["driver_id"])
        driver_id = coerce_int(data.get("driver_id"), "driver_id", minimum=1)
        require_driver_in_org(driver_id, g.org_id, require_active=False)
        try:
            day = parse_business_date(data.get("date")) or utctoday()
        except ValueError:
            raise InvalidSettlement("date must be YYYY-MM-DD", field="date")

        worker = get_worker()
        task = worker.enqueue(org_id=g.org_id, driver_id=driver_id, ledger_date=day, reason="MANUAL")
        db.session.commit()
        task_id = task.id
        worker.dispatch((g.org_id, driver_id, day))
        return jsonify({"task_id": task_id, "driver_id": driver_id, "date": day.isoformat()}), 202
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to queue ledger recompute")
        return jsonify({"error": "Internal server error"}), 500
