"""
Pytest fixtures for salesflow backend tests.

Provides the in-memory database, test client, one directory user per role,
and a small stocked catalog.
"""

import pytest

from salesflow import create_app
from salesflow.extensions import db
from salesflow.permissions.roles import (
    ADMIN,
    DIRECT_REPRESENTATIVE,
    DIRECT_SHOWROOM_MANAGER,
    DIRECT_SHOWROOM_STAFF,
    DISTRIBUTOR,
    DISTRIBUTOR_REPRESENTATIVE,
    HEAD_OF_OPERATIONS,
    MAIN_DIRECTOR,
)
from salesflow.services import catalog_service, identity_service
from salesflow.services.identity_service import Identity

SHOWROOM = "DS-SHOWROOM"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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
def make_user(db_session):
    """Factory: create a directory user and return its Identity."""
    def _make(role, *, name=None, location=SHOWROOM, user_id=None):
        user = identity_service.create_user(
            display_name=name or role,
            role=role,
            location=location,
            user_id=user_id,
        )
        db_session.commit()
        return Identity.from_user(user)

    return _make


@pytest.fixture
def rep(make_user):
    return make_user(DIRECT_REPRESENTATIVE, name="Nimal Rep")


@pytest.fixture
def ds_manager(make_user):
    return make_user(DIRECT_SHOWROOM_MANAGER, name="Showroom Manager")


@pytest.fixture
def ds_staff(make_user):
    return make_user(DIRECT_SHOWROOM_STAFF, name="Showroom Staff")


@pytest.fixture
def distributor(make_user):
    return make_user(DISTRIBUTOR, name="Kandy Distributor", location="KANDY")


@pytest.fixture
def distributor_rep(make_user):
    return make_user(DISTRIBUTOR_REPRESENTATIVE, name="Kandy Rep", location="KANDY")


@pytest.fixture
def head_ops(make_user):
    return make_user(HEAD_OF_OPERATIONS, name="Head of Operations")


@pytest.fixture
def director(make_user):
    return make_user(MAIN_DIRECTOR, name="Main Director")


@pytest.fixture
def admin(make_user):
    return make_user(ADMIN, name="Admin")


@pytest.fixture
def products(db_session):
    """P1 at 100.00 and P2 at 45.00."""
    p1 = catalog_service.create_product(name="Cinnamon Tea", price_cents=10000, product_id="P1")
    p2 = catalog_service.create_product(name="Spice Mix", variant_name="500g", price_cents=4500, product_id="P2")
    return p1, p2


@pytest.fixture
def stocked(products, admin):
    """Showroom stock: P1 x 3, P2 x 20. Returns (p1_record_id, p2_record_id)."""
    r1 = catalog_service.upsert_inventory_record(product_id="P1", location=SHOWROOM, quantity=3, actor=admin)
    r2 = catalog_service.upsert_inventory_record(product_id="P2", location=SHOWROOM, quantity=20, actor=admin)
    return r1.id, r2.id


def headers(identity) -> dict:
    """Helper to create identity headers for a user."""
    return {'X-User-Id': identity.user_id}
