"""
Pytest fixtures for cylinder ledger backend tests.

Provides the app on in-memory SQLite with the ledger worker in eager mode,
a per-test clean database, and tenant master-data fixtures.
"""

import pytest
from cylinder_ledger import create_app
from cylinder_ledger.extensions import db
from cylinder_ledger.models import Organization, Driver, CylinderSize, Product
from cylinder_ledger.services.inventory_service import receive_inventory


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_WORKER_EAGER': True,
        'LEDGER_RECOMPUTE_MAX_ATTEMPTS': 3,
        'LEDGER_RECOMPUTE_BACKOFF_SECONDS': 0.0,
        'RECEIVABLE_GRACE_DAYS': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Gas", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Gas", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def sizes(db_session, org_a):
    """12L and 35KG cylinder sizes in Organization A."""
    rows = {
        "12L": CylinderSize(org_id=org_a.id, size="12L"),
        "35KG": CylinderSize(org_id=org_a.id, size="35KG"),
    }
    db_session.add_all(rows.values())
    db_session.commit()
    return rows


@pytest.fixture(scope='function')
def products(db_session, org_a, sizes):
    """Two 12L products and one 35KG product in Organization A."""
    rows = {
        "A": Product(org_id=org_a.id, cylinder_size_id=sizes["12L"].id, name="LPG 12L Brand A"),
        "B": Product(org_id=org_a.id, cylinder_size_id=sizes["12L"].id, name="LPG 12L Brand B"),
        "C": Product(org_id=org_a.id, cylinder_size_id=sizes["35KG"].id, name="LPG 35KG"),
    }
    db_session.add_all(rows.values())
    db_session.commit()
    return rows


@pytest.fixture(scope='function')
def stocked(db_session, org_a, products):
    """100 full cylinders of every product."""
    for product in products.values():
        receive_inventory(org_id=org_a.id, product_id=product.id, quantity=100)
    return products


@pytest.fixture(scope='function')
def driver(db_session, org_a):
    d = Driver(org_id=org_a.id, name="Driver One", driver_type="RETAIL")
    db_session.add(d)
    db_session.commit()
    return d


@pytest.fixture(scope='function')
def driver_b(db_session, org_b):
    """Driver belonging to Organization B."""
    d = Driver(org_id=org_b.id, name="Driver Beta")
    db_session.add(d)
    db_session.commit()
    return d


@pytest.fixture(scope='function')
def headers(org_a):
    return {"X-Org-Id": str(org_a.id)}
