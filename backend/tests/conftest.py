"""
Pytest fixtures for the cylinder ledger backend tests.

Provides an in-memory database, master data (cylinder types, customer,
vehicle), delivery transactions, the wired service graph and a test client.
"""

import pytest

from cylinder_ledger import create_app
from cylinder_ledger.extensions import db
from cylinder_ledger.models import (
    Customer,
    CylinderType,
    DeliveryTransaction,
    DeliveryTransactionLine,
    Vehicle,
)
from cylinder_ledger.services.wiring import build_services


ACTOR_ID = 42


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OUTBOX_MAX_ATTEMPTS': 3,
        'OUTBOX_BACKOFF_BASE_SECONDS': 2,
        'OUTBOX_BACKOFF_MAX_SECONDS': 60,
        'MOVEMENT_LOG_MAX_LIMIT': 500,
        'LARGE_INITIALIZATION_THRESHOLD': 50,
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
def auth_headers():
    return {"X-User-Id": str(ACTOR_ID)}


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
def services(app, db_session):
    """Service graph bound to the test session."""
    return build_services(db_session, app.config)


@pytest.fixture(scope='function')
def cylinder_type(db_session):
    """14.2kg domestic cylinder, id 1, valued at 2500.00."""
    cylinder_type = CylinderType(id=1, description="Domestic", capacity="14.2kg", unit_value_cents=250000)
    db_session.add(cylinder_type)
    db_session.commit()
    return cylinder_type


@pytest.fixture(scope='function')
def commercial_type(db_session):
    """19kg commercial cylinder, id 2, valued at 4000.00."""
    cylinder_type = CylinderType(id=2, description="Commercial", capacity="19kg", unit_value_cents=400000)
    db_session.add(cylinder_type)
    db_session.commit()
    return cylinder_type


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(id=7, name="Sunrise Hotel")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def vehicle(db_session):
    vehicle = Vehicle(id=3, vehicle_number="KA-01-AB-1234")
    db_session.add(vehicle)
    db_session.commit()
    return vehicle


@pytest.fixture(scope='function')
def make_delivery(db_session, customer, vehicle):
    """Factory: make_delivery(delivery_id, [(type_id, delivered, returned), ...])."""
    def _make(delivery_id, lines, *, vehicle_id=None):
        delivery = DeliveryTransaction(
            id=delivery_id,
            customer_id=customer.id,
            vehicle_id=vehicle.id if vehicle_id is None else vehicle_id,
        )
        db_session.add(delivery)
        db_session.flush()
        for type_id, delivered, returned in lines:
            db_session.add(
                DeliveryTransactionLine(
                    delivery_id=delivery.id,
                    cylinder_type_id=type_id,
                    delivered_qty=delivered,
                    returned_qty=returned,
                )
            )
        db_session.commit()
        db_session.expire(delivery)
        return delivery
    return _make


@pytest.fixture(scope='function')
def stocked_yard(services, cylinder_type):
    """YARD/FILLED for cylinder type 1 = 100."""
    services.movements.initialize_inventory([{"cylinder_type_id": cylinder_type.id, "quantity": 100}], ACTOR_ID)
    return cylinder_type
