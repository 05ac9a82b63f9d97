"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all CareCadence tests.
Fixtures include database sessions, test clients, a fixed clock and
sample patients and medications.
"""

import os
import sys
from datetime import datetime, date, timedelta
from types import SimpleNamespace
from typing import Generator, Dict, Any

# Use a throwaway database before the app creates its engine
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from models import Patient, Medication, MedicationCalendarEvent, DoseStatus
from app import app


# Monday 2025-03-10 at noon; every time-dependent test runs against this clock
NOW = datetime(2025, 3, 10, 12, 0)


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a test database session"""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=test_engine
    )

    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with database override"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ==================== CLOCK ====================

@pytest.fixture
def now() -> datetime:
    """Fixed current time"""
    return NOW


# ==================== SAMPLE DATA FIXTURES ====================

@pytest.fixture
def sample_patient_data() -> Dict[str, Any]:
    """Sample patient data for creating test patients"""
    return {
        "first_name": "Maria",
        "last_name": "Lopez",
        "email": "maria.lopez@example.com",
        "timezone": "America/Chicago",
    }


@pytest.fixture
def test_patient(db_session: Session, sample_patient_data: Dict) -> Patient:
    """Create a test patient with default time buckets"""
    patient = Patient(**sample_patient_data)
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient


@pytest.fixture
def other_patient(db_session: Session) -> Patient:
    """A second patient, for ownership checks"""
    patient = Patient(first_name="Sam", last_name="Okafor", email="sam.okafor@example.com")
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient


@pytest_asyncio.fixture
async def daily_medication(db_session: Session, test_patient: Patient, now: datetime) -> Medication:
    """Once daily at 08:00, added at NOW: live events 2025-03-11 .. 2025-03-16"""
    from services.medication_service import medication_service

    return await medication_service.add_medication(
        patient_id=test_patient.id,
        name="Lisinopril",
        dosage="10mg",
        frequency="Once daily",
        now=now,
        db=db_session,
    )


@pytest_asyncio.fixture
async def prn_medication(db_session: Session, test_patient: Patient, now: datetime) -> Medication:
    """As-needed medication limited to two doses a day"""
    from services.medication_service import medication_service

    return await medication_service.add_medication(
        patient_id=test_patient.id,
        name="Ibuprofen",
        dosage="200mg",
        frequency="as needed",
        max_daily_dose=2,
        now=now,
        db=db_session,
    )


# ==================== HELPERS ====================

def live_events(db_session: Session, medication_id: str):
    """Live events for a medication, oldest first"""
    return db_session.query(MedicationCalendarEvent).filter(
        MedicationCalendarEvent.medication_id == medication_id,
        MedicationCalendarEvent.is_cancelled == False,  # noqa: E712
    ).order_by(MedicationCalendarEvent.scheduled_at).all()


def event_at(db_session: Session, medication_id: str, moment: datetime, live_only: bool = True):
    query = db_session.query(MedicationCalendarEvent).filter(
        MedicationCalendarEvent.medication_id == medication_id,
        MedicationCalendarEvent.scheduled_at == moment,
    )
    if live_only:
        query = query.filter(MedicationCalendarEvent.is_cancelled == False)  # noqa: E712
    return query.first()


class FakeEvent(SimpleNamespace):
    """Detached stand-in for a dose event, for pure engine functions"""

    @property
    def effective_due_at(self) -> datetime:
        return self.snoozed_until or self.scheduled_at


def fake_event(
    scheduled_at: datetime,
    status: DoseStatus = DoseStatus.SCHEDULED,
    taken_at: datetime = None,
    medication_id: str = "med-1",
    **extra,
) -> SimpleNamespace:
    fields = dict(
        id=extra.pop("id", f"evt-{scheduled_at.isoformat()}"),
        medication_id=medication_id,
        scheduled_at=scheduled_at,
        status=DoseStatus(status).value,
        taken_at=taken_at,
        taken_by=None,
        skip_reason=None,
        skip_notes=None,
        snooze_count=0,
        snoozed_until=None,
        snooze_history=[],
        reschedule_to=None,
        reschedule_reason=None,
        reschedule_is_one_time=None,
        is_cancelled=False,
    )
    fields.update(extra)
    return FakeEvent(**fields)


@pytest.fixture
def make_event():
    return fake_event


@pytest.fixture
def days_ago(now: datetime):
    def _days_ago(days: int, hour: int = 8, minute: int = 0) -> datetime:
        day = now.date() - timedelta(days=days)
        return datetime(day.year, day.month, day.day, hour, minute)
    return _days_ago


# ==================== MARKERS ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
