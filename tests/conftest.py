import os

# Must be set before the application modules read their settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from hospital_appointments.main import app
from hospital_appointments.core.database import Base, SessionLocal, engine, get_redis
from hospital_appointments.core.security import CallerContext, UserRole, create_access_token
from hospital_appointments.models import appointment as appointment_model  # noqa: F401
from hospital_appointments.services.appointment_service import AppointmentService

# Reference "now" for service-level tests
FIXED_NOW = datetime(2025, 1, 8, 12, 0)


class FakeRedis:
    """In-memory stand-in for the few Redis commands the rate limiter uses."""

    def __init__(self):
        self.data = {}

    def setex(self, key, ttl, value):
        self.data[key] = str(value)
        return True

    def get(self, key):
        return self.data.get(key)

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])


@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(test_db):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def client(test_db, fake_redis):
    app.dependency_overrides[get_redis] = lambda: fake_redis
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.pop(get_redis, None)


@pytest.fixture
def service(db_session):
    return AppointmentService(db_session, clock=lambda: FIXED_NOW)


def caller(user_id: str, role: UserRole) -> CallerContext:
    return CallerContext(user_id=user_id, role=role)


def auth_headers(user_id: str, role: str) -> dict:
    token = create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin():
    return caller("admin-1", UserRole.ADMIN)


@pytest.fixture
def staff():
    return caller("staff-1", UserRole.STAFF)


@pytest.fixture
def doctor():
    return caller("doctor-d", UserRole.DOCTOR)


@pytest.fixture
def other_doctor():
    return caller("doctor-e", UserRole.DOCTOR)


@pytest.fixture
def patient():
    return caller("patient-p", UserRole.PATIENT)


@pytest.fixture
def other_patient():
    return caller("patient-p2", UserRole.PATIENT)


@pytest.fixture
def nurse():
    return caller("nurse-1", UserRole.NURSE)
