# Overview: Flask API routes for settlements; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..services import settlement_service
from ..validation import LedgerError


settlements_bp = Blueprint("settlements", __name__, url_prefix="/api/settlements")


@settlements_bp.post("")
@require_tenant
def submit_settlement_route():
    """
    Submit a multi-item settlement.

    Body: driver_id, items[{product_id, package_qty, refill_qty,
    package_price_cents, refill_price_cents}], payment_type, customer_name,
    discount_cents, cash_deposited_cents, cylinder_deposits{size: count},
    sale_date, notes.

    201 with the created sale records and customer receivables. The driver
    ledger is updated after commit and is not part of this response.
    """
    try:
        settlement_request = settlement_service.parse_settlement_payload(request.get_json(silent=True))
        result = settlement_service.submit_settlement(
            g.org_id, settlement_request, created_by=g.get("actor"),
        )
        return jsonify(result), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit settlement")
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.get("/<int:settlement_id>")
@require_tenant
def get_settlement_route(settlement_id: int):
    try:
        return jsonify(settlement_service.settlement_detail(g.org_id, settlement_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load settlement")
        return jsonify({"error": "Internal server error"}), 500
