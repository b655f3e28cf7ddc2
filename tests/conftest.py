"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all DoseReminder tests.
Fixtures include database sessions, test clients, sample data, and mocks.
"""

import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Dict, Any
from unittest.mock import AsyncMock

import pytest

# Configure before the application modules read settings
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("TIMEZONE", "America/Sao_Paulo")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from models import (
    User, Medication, DoseSchedule, NotificationLog, UserNotificationConfig, DoseStatus
)
from app import app


# 09:00 in Sao Paulo (UTC-3)
FIXED_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def naive(value: datetime) -> datetime:
    """Storage form of an aware UTC datetime"""
    return value.astimezone(timezone.utc).replace(tzinfo=None)


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
        bind=test_engine
    )

    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    """Context-managed sessions on the test engine, shaped like get_db_context"""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_engine
    )

    @contextmanager
    def _factory():
        session = TestingSessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _factory


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


# ==================== SAMPLE DATA FIXTURES ====================

@pytest.fixture
def now() -> datetime:
    """Fixed reference instant for deterministic schedules"""
    return FIXED_NOW


@pytest.fixture
def sample_user_data() -> Dict[str, Any]:
    return {
        "name": "Maria Silva",
        "email": "maria.silva@example.com",
    }


@pytest.fixture
def sample_medication_data() -> Dict[str, Any]:
    """Sample medication data for creating test medications"""
    return {
        "name": "Amoxicillin",
        "dosage": "500mg",
        "description": "Take with water",
        "frequency_hours": 8.0,
        "start_time": "08:00",
        "duration_days": None,
        "active": True,
    }


@pytest.fixture
def test_user(db_session: Session, sample_user_data: Dict) -> User:
    """Create and return a test user"""
    user = User(**sample_user_data)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def test_medication(db_session: Session, test_user: User, sample_medication_data: Dict) -> Medication:
    """Create a medication without generated doses"""
    medication = Medication(user_id=test_user.id, **sample_medication_data)
    db_session.add(medication)
    db_session.commit()
    db_session.refresh(medication)
    return medication


@pytest.fixture
def notification_config(db_session: Session, test_user: User) -> UserNotificationConfig:
    """Fully configured delivery settings"""
    config = UserNotificationConfig(
        user_id=test_user.id,
        pushover_email="abc123@pomail.net",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_secure=False,
        smtp_user="maria.silva@example.com",
        smtp_password="app-password",
        notifications_enabled=True
    )
    db_session.add(config)
    db_session.commit()
    db_session.refresh(config)
    return config


@pytest.fixture
def add_dose(db_session: Session):
    """Factory inserting a dose instance at an aware UTC time"""
    def _add(medication: Medication, when: datetime, status: str = DoseStatus.PENDING.value) -> DoseSchedule:
        dose = DoseSchedule(
            medication_id=medication.id,
            scheduled_time=naive(when),
            status=status,
            taken_at=naive(when) if status == DoseStatus.TAKEN.value else None
        )
        db_session.add(dose)
        db_session.commit()
        db_session.refresh(dose)
        return dose

    return _add


@pytest.fixture
def add_log(db_session: Session):
    """Factory inserting a notification log entry"""
    def _add(dose: DoseSchedule, sent_at: datetime, status: str = "sent") -> NotificationLog:
        entry = NotificationLog(
            medication_id=dose.medication_id,
            schedule_id=dose.id,
            channel="email",
            status=status,
            message="test",
            sent_at=naive(sent_at)
        )
        db_session.add(entry)
        db_session.commit()
        db_session.refresh(entry)
        return entry

    return _add


# ==================== MOCK FIXTURES ====================

@pytest.fixture
def mock_email_sender():
    """Email sender whose SMTP side is replaced by AsyncMocks"""
    sender = AsyncMock()
    sender.send_medication_reminder = AsyncMock(return_value="<test-message-id@example.com>")
    sender.send_test_email = AsyncMock(return_value="<test-message-id@example.com>")
    sender.verify = AsyncMock(return_value=True)
    return sender


# ==================== MARKERS ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
