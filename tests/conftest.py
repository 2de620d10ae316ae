"""
Pytest configuration and shared fixtures.

Test environment defaults are set before any church_sms import so the cached
settings and the engine pick them up. Real environment variables still win.
"""

import os
import tempfile
from datetime import datetime, timedelta

import pytest

os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "church_sms_test.db"),
)
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from church_sms.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from church_sms import models  # noqa: E402
from church_sms.main import app  # noqa: E402
from church_sms.storage import Base, SessionLocal, engine  # noqa: E402

BASE_TIME = datetime(2025, 1, 5, 9, 0, 0)


@pytest.fixture(scope="function")
def db():
    """Fresh schema and a session for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def override_settings():
    """Swap the settings the webhook sees, e.g. override_settings(ENFORCE_UNIQUE_MESSAGE_SID=True)."""

    def _override(**updates):
        patched = get_settings().model_copy(update=updates)
        app.dependency_overrides[get_settings] = lambda: patched
        return patched

    yield _override
    app.dependency_overrides.pop(get_settings, None)


# --- Factory functions for test data ---

def add_member(db, firstname="Grace", lastname="Hopper", phone="555-123-4567"):
    member = models.Member(firstname=firstname, lastname=lastname, phone=phone)
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def add_conversation(db, title="General", group_id=None, status="active", minutes=0):
    created = BASE_TIME + timedelta(minutes=minutes)
    conversation = models.Conversation(
        title=title,
        conversation_type="general",
        group_id=group_id,
        status=status,
        created_at=created,
        updated_at=created,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def add_group_member(db, group_id, member_id):
    db.add(models.GroupMember(group_id=group_id, member_id=member_id))
    db.commit()


def add_message(
    db,
    conversation_id=None,
    member_id=None,
    from_number="+15551234567",
    to_number="+15550001111",
    direction="inbound",
    body="hello",
    sid=None,
    minutes=0,
):
    ts = BASE_TIME + timedelta(minutes=minutes)
    message = models.Message(
        twilio_sid=sid,
        direction=direction,
        from_number=from_number,
        to_number=to_number,
        body=body,
        status="delivered",
        member_id=member_id,
        conversation_id=conversation_id,
        delivered_at=ts,
        created_at=ts,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message
