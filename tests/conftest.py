# tests/conftest.py
"""Global test configuration and fixtures."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sms_flows.conf import FOLLOWUP_FLOW_ID, ONGOING_FLOW_ID, WELCOME_FLOW_ID
from sms_flows.db import engine as engine_module
from sms_flows.db.models import Base
from tests.fixtures.flows import add_flow


@pytest.fixture
def engine(monkeypatch):
    """In-memory database shared by every session opened during the test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    monkeypatch.setattr(engine_module, "_engine", test_engine)
    yield test_engine
    test_engine.dispose()

@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture
def standard_flows(db_session):
    """Welcome (2 messages), follow-up (1 message) and ongoing (1 message) flows."""
    add_flow(
        db_session,
        WELCOME_FLOW_ID,
        name="welcome",
        messages=[
            {"sequence_order": 1, "message_text": "Welcome! You won."},
            {
                "sequence_order": 2,
                "message_text": "Claim it at https://shoutout.us/claim",
                "delay_days": 1,
                "delay_hours": 2,
                "include_coupon": True,
            },
        ],
    )
    add_flow(
        db_session,
        FOLLOWUP_FLOW_ID,
        name="followup",
        messages=[{"sequence_order": 1, "message_text": "Your prize expires soon", "include_coupon": True}],
    )
    add_flow(
        db_session,
        ONGOING_FLOW_ID,
        name="ongoing",
        messages=[{"sequence_order": 1, "message_text": "New talent this week"}],
    )
    return db_session
