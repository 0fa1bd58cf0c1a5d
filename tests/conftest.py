import os
from datetime import date, datetime, time, timedelta

import pytest

# Set testing environment before the package reads its settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test_scheduling.db"

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker

from clinic_scheduler.main import app
from clinic_scheduler.core.database import Base, engine, get_db
from clinic_scheduler.core.context import RequestContext
from clinic_scheduler.core.config import settings
from clinic_scheduler.core.security import UserRole
from clinic_scheduler.models import AvailabilityTemplate, Doctor, Patient

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

# 2030-01-07 is a Monday; service tests run "now" a week earlier
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 8, 0)


def make_ctx(role=UserRole.STAFF, actor_id=1, now=NOW):
    return RequestContext(actor_id=actor_id, role=role, now=now)


def create_actor_token(actor_id, role, token_type="access"):
    """Mint an access token the way the clinic identity service does."""
    expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {"sub": str(actor_id), "role": role.value, "exp": expire, "token_type": token_type}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(role=UserRole.STAFF, actor_id=1):
    return {"Authorization": f"Bearer {create_actor_token(actor_id, role)}"}


def next_weekday(weekday, after=None):
    """First date strictly after ``after`` (default today) falling on ``weekday``."""
    after = after or date.today()
    days = (weekday - after.weekday()) % 7 or 7
    return after + timedelta(days=days)


@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_db):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(test_db):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


@pytest.fixture
def doctor(db):
    doc = Doctor(first_name="Dana", last_name="Reyes", specialization="General Practice")
    db.add(doc)
    db.commit()
    db.refresh(doc)
    return doc


@pytest.fixture
def patients(db):
    rows = [
        Patient(first_name="Pat", last_name="One"),
        Patient(first_name="Pat", last_name="Two"),
        Patient(first_name="Pat", last_name="Three"),
    ]
    db.add_all(rows)
    db.commit()
    for row in rows:
        db.refresh(row)
    return rows


def add_template(db, doctor_id, day_of_week=0, start=time(9, 0), end=time(10, 0),
                 duration=30, capacity=1, is_available=True):
    template = AvailabilityTemplate(
        doctor_id=doctor_id,
        day_of_week=day_of_week,
        start_time=start,
        end_time=end,
        slot_duration_minutes=duration,
        capacity_per_slot=capacity,
        is_available=is_available,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


@pytest.fixture
def monday_template(db, doctor):
    """Monday 09:00-10:00, 30-minute slots, one patient per slot."""
    return add_template(db, doctor.id)
