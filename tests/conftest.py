"""
Pytest configuration and shared fixtures.

Each test gets its own application around a fresh MemStorage, so no state
leaks between tests.
"""

import pytest
from fastapi.testclient import TestClient

from sms_inbox.config import Settings, get_settings
from sms_inbox.main import create_app
from sms_inbox.storage import MemStorage

# Settings are cached per process; make sure tests never see a stale instance
get_settings.cache_clear()


TEST_PHONE_NUMBER = "+15559998888"


@pytest.fixture
def store() -> MemStorage:
    return MemStorage()


@pytest.fixture
def settings() -> Settings:
    """Settings with signature verification disabled."""
    return Settings(
        LOG_LEVEL="DEBUG",
        TWILIO_PHONE_NUMBER=TEST_PHONE_NUMBER,
        TWILIO_AUTH_TOKEN=None,
        TWILIO_WEBHOOK_URL=None,
    )


@pytest.fixture
def client(settings, store):
    """Test client bound to the per-test store."""
    app = create_app(settings=settings, store=store)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def valid_payload() -> dict:
    return {
        "MessageSid": "SM1",
        "AccountSid": "AC123",
        "From": "+15550001111",
        "To": "+15559998888",
        "Body": "hello",
        "NumMedia": "0",
    }
