"""
Pytest fixtures for box office backend tests.

Provides test database setup, operator/event/staff factories, and test client.
"""

from datetime import date

import pytest
from boxoffice import create_app
from boxoffice.extensions import db
from boxoffice.models import AdminOperator, Event, TicketTier, EventStaff, StaffEventAssignment
from boxoffice.models.auth import ROLE_ADMIN, ROLE_SUPER_ADMIN
from boxoffice.services.auth_service import hash_password


PASSWORD = "Password123!"

TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret-key',
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_ROUNDS': 4,
    'EMAIL_BACKEND': 'log',
    'EMAIL_DISPATCH_SYNC': True,
    'LOGIN_MAX_FAILED_ATTEMPTS': 5,
    'SCANNER_PIN': '4321',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
def make_operator(db_session):
    """Factory: make_operator(email, role=..., is_active=True)."""
    def _make(email, role=ROLE_ADMIN, is_active=True, name=None):
        operator = AdminOperator(
            name=name or email.split("@")[0].title(),
            email=email,
            password_hash=hash_password(PASSWORD),
            role=role,
            is_active=is_active,
        )
        db_session.add(operator)
        db_session.commit()
        return operator
    return _make


@pytest.fixture(scope='function')
def super_admin(make_operator):
    return make_operator("root@choir.rw", role=ROLE_SUPER_ADMIN, name="Choir Root")


@pytest.fixture(scope='function')
def admin(make_operator):
    return make_operator("treasurer@choir.rw", role=ROLE_ADMIN, name="Treasurer")


@pytest.fixture(scope='function')
def make_event(db_session):
    """Factory: make_event(title, tiers=[(name, price, capacity, max_per_order)])."""
    def _make(title="Christmas Concert", tiers=(("Regular", 5000, 100, 10),), is_published=True):
        event = Event(
            title=title,
            event_date=date(2026, 12, 20),
            event_time="18:00",
            location="Kigali Serena Hotel",
            is_published=is_published,
        )
        db_session.add(event)
        db_session.flush()
        for name, price, capacity, max_per_order in tiers:
            db_session.add(TicketTier(
                event_id=event.id,
                name=name,
                unit_price=price,
                capacity=capacity,
                max_per_order=max_per_order,
                sold=0,
            ))
        db_session.commit()
        return event
    return _make


@pytest.fixture(scope='function')
def event_a(make_event):
    return make_event("Christmas Concert", tiers=(("Regular", 5000, 100, 10), ("VIP", 20000, 20, 4)))


@pytest.fixture(scope='function')
def event_b(make_event):
    return make_event("Easter Praise Night", tiers=(("Regular", 3000, 50, 10),))


@pytest.fixture(scope='function')
def make_staff(db_session):
    """Factory: make_staff(national_id, event_ids, status='active')."""
    def _make(national_id="1199880012345678", event_ids=(), status="active", name="Door Keeper"):
        staff = EventStaff(
            name=name,
            national_id=national_id,
            phone="+250788000000",
            status=status,
        )
        db_session.add(staff)
        db_session.flush()
        for event_id in event_ids:
            db_session.add(StaffEventAssignment(staff_id=staff.id, event_id=event_id))
        db_session.commit()
        return staff
    return _make


@pytest.fixture(scope='function')
def buyer():
    return {"name": "Aline Uwase", "email": "aline@example.rw", "phone": "+250788123456"}


@pytest.fixture(scope='function')
def login(client):
    """Factory: login(email, password=..., remember=False) -> Authorization headers."""
    def _login(email, password=PASSWORD, remember=False):
        response = client.post('/api/auth/login', json={
            'email': email,
            'password': password,
            'remember': remember,
        })
        assert response.status_code == 200, response.json
        return {'Authorization': f"Bearer {response.json['token']}"}
    return _login
