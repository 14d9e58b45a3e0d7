# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.tenant_service import TenantAccessError, require_active_org


def require_tenant(f):
    """
    Establish tenant context from the X-Org-Id header.

    Authentication happens upstream; this only resolves which organization
    the request acts for.

    MULTI-TENANT: Sets g.org_id. Returns 401 if the header is missing, not an
    integer, or names an unknown or inactive organization.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get("X-Org-Id") or "").strip()
        if not raw:
            return jsonify({"error": "Tenant context required"}), 401
        if not raw.isdigit():
            return jsonify({"error": "Invalid tenant context"}), 401

        try:
            org = require_active_org(int(raw))
        except TenantAccessError:
            return jsonify({"error": "Invalid tenant context"}), 401

        g.org_id = org.id
        g.actor = request.headers.get("X-Actor")
        return f(*args, **kwargs)

    return decorated_function
