"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

Every ledger operation is scoped to one organization. Ids coming from
client input are resolved only inside that organization; an id belonging to
another tenant is reported exactly like a missing one.

USAGE:
    from cylinder_ledger.services.tenant_service import require_driver_in_org

    driver = require_driver_in_org(driver_id, g.org_id)
"""


from ..extensions import db
from ..models import Organization, Driver, Product, CylinderSize
from ..validation import NotFound


class TenantAccessError(Exception):
    """Raised when the tenant context is missing or not usable."""
    pass


def require_active_org(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id)
    if org is None or not org.is_active:
        raise TenantAccessError("Organization not found or inactive")
    return org


def require_driver_in_org(driver_id: int, org_id: int, *, require_active: bool = True) -> Driver:
    """
    Resolve a driver inside the tenant.

    Raises NotFound if the driver doesn't exist, belongs to another org, or
    (with require_active) is not ACTIVE.
    """
    driver = db.session.query(Driver).filter_by(id=driver_id, org_id=org_id).first()
    if driver is None:
        raise NotFound("Driver not found", details={"field": "driver_id", "driver_id": driver_id})
    if require_active and not driver.is_active:
        raise NotFound("Driver not found or inactive", details={"field": "driver_id", "driver_id": driver_id})
    return driver


def get_active_products(product_ids: list[int], org_id: int) -> dict[int, Product]:
    """
    Load active products of the tenant by id.

    Raises NotFound listing the missing ids when any requested product is
    absent, inactive, or owned by another org.
    """
    unique_ids = sorted(set(product_ids))
    if not unique_ids:
        return {}

    products = (
        db.session.query(Product)
        .filter(Product.id.in_(unique_ids), Product.org_id == org_id, Product.is_active.is_(True))
        .all()
    )
    found = {p.id: p for p in products}
    missing = [pid for pid in unique_ids if pid not in found]
    if missing:
        raise NotFound(
            "Some products not found or inactive",
            details={"field": "items", "requested_ids": unique_ids, "missing_ids": missing},
        )
    return found


def get_cylinder_sizes(org_id: int) -> dict[str, CylinderSize]:
    """Active cylinder sizes of the tenant keyed by size label."""
    sizes = (
        db.session.query(CylinderSize)
        .filter(CylinderSize.org_id == org_id, CylinderSize.is_active.is_(True))
        .all()
    )
    return {s.size: s for s in sizes}
