# backend/tests/conftest.py
"""
Pytest configuration for the InkFlow backend.

Every test gets a fresh in-memory SQLite database. Outbound email and Celery
enqueueing are patched so no test ever reaches Resend or a broker.
"""

import os

# Set test configuration BEFORE any inkflow imports
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EMAIL_PROVIDER"] = "console"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"

import unittest.mock

# Mock Resend globally to prevent real emails in ANY test
global_resend_mock = unittest.mock.patch("resend.Emails.send")
mocked_send = global_resend_mock.start()
mocked_send.return_value = {"id": "test-email-id"}

from datetime import date
from typing import Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy.orm import Session

from inkflow.api.dependencies.database import get_db
from inkflow.database import Database
from inkflow.main import create_app
from inkflow.models.availability import Absence
from inkflow.models.client import Client
from inkflow.models.provider import Provider
from tests.factories.booking_builders import make_client, make_provider


@pytest.fixture(scope="function")
def database():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture(scope="function")
def db(database: Database):
    """Create a new database session for each test."""
    session = database.session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def enqueued():
    """Capture notification enqueues instead of talking to a broker."""
    with unittest.mock.patch("inkflow.services.notification_service.enqueue_task") as mock_enqueue:
        yield mock_enqueue


@pytest.fixture(autouse=True)
def _reset_resend_mock():
    mocked_send.reset_mock(side_effect=True)
    mocked_send.return_value = {"id": "test-email-id"}
    yield


@pytest.fixture
def provider(db: Session) -> Provider:
    """Provider working Monday-Friday 10:00-18:00, not yet onboarded on Stripe."""
    return make_provider(db)


@pytest.fixture
def onboarded_provider(db: Session) -> Provider:
    return make_provider(db, email="onboarded@example.com", onboarded=True)


@pytest.fixture
def booking_client(db: Session) -> Client:
    return make_client(db)


@pytest.fixture
def add_absence(db: Session):
    def _add(provider: Provider, day: date, reason: Optional[str] = None) -> Absence:
        absence = Absence(provider_id=provider.id, date=day, reason=reason)
        db.add(absence)
        db.commit()
        return absence

    return _add


@pytest.fixture
def app(database: Database, db: Session):
    app = create_app(database=database)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Create a test client with the test database."""
    # Don't use context manager - the database is already owned by the test
    test_client = TestClient(app)
    yield test_client
    test_client.close()


def pytest_sessionfinish(session, exitstatus):
    """Cleanup after all tests are done."""
    global_resend_mock.stop()
