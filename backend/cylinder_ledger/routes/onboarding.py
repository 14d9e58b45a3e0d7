# Overview: Flask API routes for tenant onboarding balances.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..services import baseline_service
from ..validation import LedgerError


onboarding_bp = Blueprint("onboarding", __name__, url_prefix="/api/onboarding")


@onboarding_bp.post("/baselines")
@require_tenant
def seed_baselines_route():
    """
    One-time seeding of opening driver balances and stock.

    409 once onboarding has completed for the organization.
    """
    try:
        result = baseline_service.seed_onboarding(g.org_id, request.get_json(silent=True) or {})
        return jsonify(result), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to seed onboarding baselines")
        return jsonify({"error": "Internal server error"}), 500


@onboarding_bp.get("/baselines")
@require_tenant
def list_baselines_route():
    driver_id = request.args.get("driver_id", type=int)
    baselines = baseline_service.list_baselines(g.org_id, driver_id)
    return jsonify({"baselines": [b.to_dict() for b in baselines]}), 200
