"""
Pytest fixtures for loyalty backend tests.

Provides a fresh in-memory database per test, user factories per role,
and bearer-token headers backed by real session rows.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from loyalty import create_app
from loyalty.extensions import db
from loyalty.models import Event, Promotion, User
from loyalty.models.promotions import PROMOTION_TYPE_ONE_TIME
from loyalty.services import session_service
from loyalty.services.auth_service import hash_password
from loyalty.time_utils import utcnow


TEST_PASSWORD = "Passw0rd!"


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def make_user(app):
    """Factory: make_user("utorid1", role="cashier", points=100)."""
    def _make(utorid, role="regular", points=0, verified=True, suspicious=False, password=TEST_PASSWORD):
        user = User(
            utorid=utorid,
            email=f"{utorid}@mail.utoronto.ca",
            name=utorid.capitalize(),
            role=role,
            points=points,
            verified=verified,
            suspicious=suspicious,
            password_hash=hash_password(password) if password else None,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def regular(make_user):
    return make_user("regular1", points=100)


@pytest.fixture(scope='function')
def other_regular(make_user):
    return make_user("regular2")


@pytest.fixture(scope='function')
def cashier(make_user):
    return make_user("cashier1", role="cashier")


@pytest.fixture(scope='function')
def manager(make_user):
    return make_user("manager1", role="manager")


@pytest.fixture(scope='function')
def superuser(make_user):
    return make_user("super001", role="superuser")


@pytest.fixture(scope='function')
def make_promotion(app):
    """Factory for promotions that are active right now unless told otherwise."""
    def _make(type=PROMOTION_TYPE_ONE_TIME, points=None, rate=None, min_spending=None,
              starts_in=timedelta(hours=-1), lasts=timedelta(hours=2), name="Promo"):
        start = utcnow() + starts_in
        promo = Promotion(
            name=name,
            description="test promotion",
            type=type,
            start_time=start,
            end_time=start + lasts,
            points=points,
            rate=Decimal(str(rate)) if rate is not None else None,
            min_spending=Decimal(str(min_spending)) if min_spending is not None else None,
        )
        db.session.add(promo)
        db.session.commit()
        return promo

    return _make


@pytest.fixture(scope='function')
def make_event(app):
    """Factory for events starting tomorrow."""
    def _make(capacity=None, points=100, published=True, starts_in=timedelta(days=1),
              lasts=timedelta(hours=3), name="Event"):
        start = utcnow() + starts_in
        event = Event(
            name=name,
            description="test event",
            location="BA1160",
            start_time=start,
            end_time=start + lasts,
            capacity=capacity,
            space_remain=capacity,
            points_remain=points,
            points_awarded=0,
            published=published,
        )
        db.session.add(event)
        db.session.commit()
        return event

    return _make


@pytest.fixture(scope='function')
def auth_headers(app):
    """auth_headers(user) -> Bearer headers backed by a real session row."""
    def _headers(user) -> dict:
        _, token = session_service.create_session(user)
        return {'Authorization': f'Bearer {token}'}

    return _headers
