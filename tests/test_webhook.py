"""
Tests for the POST /api/webhooks/sms endpoint.

Tests cover:
- Form-encoded and JSON deliveries
- Duplicate delivery handling (idempotency)
- Validation errors (400) leave the store untouched
- X-Twilio-Signature verification (401)
- Store failures (500)
"""

import pytest
from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from sms_inbox.config import Settings
from sms_inbox.main import create_app
from sms_inbox.storage import MemStorage


TEST_AUTH_TOKEN = "test_auth_token"

WEBHOOK_PATH = "/api/webhooks/sms"
WEBHOOK_URL = "http://testserver" + WEBHOOK_PATH


def sign(url: str, params: dict, token: str = TEST_AUTH_TOKEN) -> str:
    """Compute X-Twilio-Signature the way Twilio does for a request."""
    return RequestValidator(token).compute_signature(url, params)


class BrokenStorage(MemStorage):
    def insert(self, record):
        raise RuntimeError("out of memory")


@pytest.fixture
def signed_client(store):
    """Client for an app with signature verification enabled."""
    settings = Settings(LOG_LEVEL="DEBUG", TWILIO_AUTH_TOKEN=TEST_AUTH_TOKEN, TWILIO_WEBHOOK_URL=None)
    with TestClient(create_app(settings=settings, store=store)) as test_client:
        yield test_client


class TestWebhookDelivery:
    """Test accepted deliveries."""

    def test_form_delivery_is_stored(self, client, store, valid_payload):
        response = client.post(WEBHOOK_PATH, data=valid_payload)

        assert response.status_code == 200
        assert response.text == "OK"
        assert response.headers["content-type"].startswith("text/plain")

        messages = store.list_all()
        assert len(messages) == 1
        assert messages[0].body == "hello"
        assert messages[0].twilio_sid == "SM1"
        assert messages[0].from_number == "+15550001111"
        assert messages[0].to_number == "+15559998888"

    def test_json_delivery_is_stored(self, client, store, valid_payload):
        response = client.post(WEBHOOK_PATH, json=valid_payload)

        assert response.status_code == 200
        assert response.text == "OK"
        assert store.find_by_external_id("SM1") is not None

    def test_addresses_are_not_transformed(self, client, store, valid_payload):
        valid_payload["From"] = "whatsapp:+15550001111"
        valid_payload["To"] = "12345"

        response = client.post(WEBHOOK_PATH, data=valid_payload)

        assert response.status_code == 200
        message = store.find_by_external_id("SM1")
        assert message.from_number == "whatsapp:+15550001111"
        assert message.to_number == "12345"

    def test_empty_body_is_accepted(self, client, store, valid_payload):
        valid_payload["Body"] = ""

        response = client.post(WEBHOOK_PATH, data=valid_payload)

        assert response.status_code == 200
        assert store.find_by_external_id("SM1").body == ""

    def test_response_includes_request_id_header(self, client, valid_payload):
        response = client.post(WEBHOOK_PATH, data=valid_payload)
        assert "x-request-id" in response.headers


class TestWebhookIdempotency:
    """Test redelivery of the same MessageSid."""

    def test_repeated_delivery_stores_once(self, client, store, valid_payload):
        responses = [client.post(WEBHOOK_PATH, data=valid_payload) for _ in range(5)]

        assert all(r.status_code == 200 for r in responses)
        assert all(r.text == "OK" for r in responses)
        assert store.count() == 1

    def test_redelivery_with_different_body_keeps_first(self, client, store, valid_payload):
        client.post(WEBHOOK_PATH, data=valid_payload)
        valid_payload["Body"] = "changed"
        response = client.post(WEBHOOK_PATH, data=valid_payload)

        assert response.status_code == 200
        assert store.count() == 1
        assert store.list_all()[0].body == "hello"

    def test_form_then_json_redelivery(self, client, store, valid_payload):
        client.post(WEBHOOK_PATH, data=valid_payload)
        client.post(WEBHOOK_PATH, json=valid_payload)

        assert store.count() == 1


class TestWebhookValidationErrors:
    """Test rejected payloads (400)."""

    @pytest.mark.parametrize("field", ["MessageSid", "From", "To", "Body"])
    def test_missing_required_field(self, client, store, valid_payload, field):
        del valid_payload[field]

        response = client.post(WEBHOOK_PATH, data=valid_payload)

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid webhook data"}
        assert store.count() == 0

    def test_empty_message_sid(self, client, store, valid_payload):
        valid_payload["MessageSid"] = ""

        response = client.post(WEBHOOK_PATH, data=valid_payload)

        assert response.status_code == 400
        assert store.count() == 0

    def test_non_string_field(self, client, store, valid_payload):
        valid_payload["Body"] = 42

        response = client.post(WEBHOOK_PATH, json=valid_payload)

        assert response.status_code == 400
        assert store.count() == 0

    def test_invalid_json(self, client, store):
        response = client.post(
            WEBHOOK_PATH,
            content="not valid json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert store.count() == 0

    def test_json_array(self, client, store, valid_payload):
        response = client.post(WEBHOOK_PATH, json=[valid_payload])

        assert response.status_code == 400
        assert store.count() == 0

    def test_empty_body(self, client, store):
        response = client.post(WEBHOOK_PATH)

        assert response.status_code == 400
        assert store.count() == 0

    def test_rejection_does_not_touch_existing_messages(self, client, store, valid_payload):
        client.post(WEBHOOK_PATH, data=valid_payload)
        before = store.list_all()

        response = client.post(WEBHOOK_PATH, data={"MessageSid": "SM2", "From": "+1", "To": "+2"})

        assert response.status_code == 400
        assert store.list_all() == before


class TestWebhookSignature:
    """Test X-Twilio-Signature verification when TWILIO_AUTH_TOKEN is set."""

    def test_valid_signature(self, signed_client, store, valid_payload):
        signature = sign(WEBHOOK_URL, valid_payload)

        response = signed_client.post(
            WEBHOOK_PATH,
            data=valid_payload,
            headers={"X-Twilio-Signature": signature}
        )

        assert response.status_code == 200
        assert store.count() == 1

    def test_missing_signature(self, signed_client, store, valid_payload):
        response = signed_client.post(WEBHOOK_PATH, data=valid_payload)

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid signature"}
        assert store.count() == 0

    def test_signature_with_wrong_token(self, signed_client, store, valid_payload):
        signature = sign(WEBHOOK_URL, valid_payload, token="wrong_token")

        response = signed_client.post(
            WEBHOOK_PATH,
            data=valid_payload,
            headers={"X-Twilio-Signature": signature}
        )

        assert response.status_code == 401
        assert store.count() == 0

    def test_signature_for_different_params(self, signed_client, store, valid_payload):
        signature = sign(WEBHOOK_URL, valid_payload)
        valid_payload["Body"] = "tampered"

        response = signed_client.post(
            WEBHOOK_PATH,
            data=valid_payload,
            headers={"X-Twilio-Signature": signature}
        )

        assert response.status_code == 401
        assert store.count() == 0

    def test_configured_public_url_is_signed(self, store, valid_payload):
        public_url = "https://inbox.example.com/api/webhooks/sms"
        settings = Settings(TWILIO_AUTH_TOKEN=TEST_AUTH_TOKEN, TWILIO_WEBHOOK_URL=public_url)
        signature = sign(public_url, valid_payload)

        with TestClient(create_app(settings=settings, store=store)) as test_client:
            response = test_client.post(
                WEBHOOK_PATH,
                data=valid_payload,
                headers={"X-Twilio-Signature": signature}
            )

        assert response.status_code == 200
        assert store.count() == 1

    def test_signature_over_url_with_default_port(self, store, valid_payload):
        public_url = "https://inbox.example.com/api/webhooks/sms"
        settings = Settings(TWILIO_AUTH_TOKEN=TEST_AUTH_TOKEN, TWILIO_WEBHOOK_URL=public_url)
        signature = sign("https://inbox.example.com:443/api/webhooks/sms", valid_payload)

        with TestClient(create_app(settings=settings, store=store)) as test_client:
            response = test_client.post(
                WEBHOOK_PATH,
                data=valid_payload,
                headers={"X-Twilio-Signature": signature}
            )

        assert response.status_code == 200
        assert store.count() == 1

    def test_non_ascii_signature_header(self, signed_client, store, valid_payload):
        response = signed_client.post(
            WEBHOOK_PATH,
            data=valid_payload,
            headers={"X-Twilio-Signature": "café".encode("latin-1")}
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid signature"}
        assert store.count() == 0


class TestWebhookStoreFailure:
    """Test store failures surface as 500."""

    def test_insert_failure(self, settings, valid_payload):
        store = BrokenStorage()
        with TestClient(create_app(settings=settings, store=store)) as test_client:
            response = test_client.post(WEBHOOK_PATH, data=valid_payload)

        assert response.status_code == 500
        assert response.json() == {"detail": "Failed to store message"}
        assert store.count() == 0
