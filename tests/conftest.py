"""
Pytest configuration and shared fixtures.

- SQLite in-memory database shared across threads (StaticPool)
- FastAPI TestClient with get_db and the rate limiters overridden
- Factories for clinics, users, orders and bearer tokens
"""

import os

# Configure the app for tests BEFORE importing it
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DB_BOOTSTRAP_ON_STARTUP"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from patient_api import config
from patient_api.database import Base, get_db
from patient_api.main import app
from patient_api.models import Clinic, User, UserRoles
from patient_api.models_order import Order, Payment, ShippingAddress
from patient_api.rate_limiter import rate_limit_auth, rate_limit_webhook
from patient_api.security_utils import create_jwt_token, hash_password

TEST_PASSWORD = "Password123!"
_password_hash = None


def password_hash() -> str:
    global _password_hash
    if _password_hash is None:
        _password_hash = hash_password(TEST_PASSWORD)
    return _password_hash


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# APPLICATION FIXTURES
# =============================================================================


@pytest.fixture
def client(db) -> Generator[TestClient, None, None]:
    async def no_rate_limit():
        return None

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[rate_limit_auth] = no_rate_limit
    app.dependency_overrides[rate_limit_webhook] = no_rate_limit
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clear_integration_secrets(monkeypatch):
    """Tests opt in to webhook secrets and provider credentials explicitly"""
    for name in (
        "MD_INTEGRATIONS_WEBHOOK_SECRET",
        "OLYMPIA_PHARMACY_WEBHOOK_SECRET",
        "STRIPE_SECRET_KEY",
        "STRIPE_PLATFORM_ACCOUNT_ID",
        "IRONSAIL_CLIENT_ID",
        "IRONSAIL_CLIENT_SECRET",
        "OLYMPIA_PHARMACY_USERNAME",
        "OLYMPIA_PHARMACY_PASSWORD",
    ):
        monkeypatch.setattr(config, name, None)


# =============================================================================
# FACTORIES
# =============================================================================


@pytest.fixture
def make_clinic(db):
    counter = {"n": 0}

    def _make(name: str = None, **fields) -> Clinic:
        counter["n"] += 1
        name = name or f"Clinic {counter['n']}"
        clinic = Clinic(name=name, slug=fields.pop("slug", Clinic.slugify(name)), **fields)
        db.add(clinic)
        db.commit()
        db.refresh(clinic)
        return clinic

    return _make


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role: str = "patient", clinic: Clinic = None, extra_roles=(), **fields) -> User:
        counter["n"] += 1
        user = User(
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", f"User{counter['n']}"),
            email=fields.pop("email", f"user{counter['n']}@example.com"),
            password_hash=password_hash(),
            role=role,
            clinic_id=clinic.id if clinic else None,
            activated=fields.pop("activated", True),
            **fields,
        )
        db.add(user)
        db.flush()
        roles = {name: True for name in (role, *extra_roles)}
        db.add(UserRoles(user_id=user.id, **roles))
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: User, **claims) -> dict:
        token = create_jwt_token({"sub": user.id, "role": user.role, "clinicId": user.clinic_id, **claims})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_order(db):
    def _make(patient: User, clinic: Clinic = None, payment: dict = None, **fields) -> Order:
        address = ShippingAddress(
            user_id=patient.id, address="1 Main St", city="Austin", state="TX", zip_code="78701"
        )
        db.add(address)
        db.flush()
        order = Order(
            user_id=patient.id,
            clinic_id=clinic.id if clinic else None,
            shipping_address_id=address.id,
            **{"status": "paid", "total_amount": 100.0, **fields},
        )
        db.add(order)
        db.flush()
        if payment is not None:
            db.add(Payment(order_id=order.id, **{"status": "succeeded", "amount": order.total_amount, **payment}))
        db.commit()
        db.refresh(order)
        return order

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", email="admin@example.com")
