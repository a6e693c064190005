import os
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
# Force dev mode for default test app; production validation tests override settings directly
os.environ["APP_ENV"] = "dev"
os.environ.setdefault("CRM_API_TOKEN", "test_token")
os.environ.setdefault("CRM_LOCATION_ID", "test_location")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_test")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("CRM_DRY_RUN", "true")
os.environ.setdefault("BUBBLE_DELAY_SECONDS", "0")  # No pacing between bubbles in tests
os.environ.pop("RESPONDER_URL", None)  # Generative replies fall back to canned copy
os.environ.pop("ADMIN_API_KEY", None)

from studio_assistant.main import app
from studio_assistant.services.messaging.outbound import generation_tracker
from tests.helpers.fake_backends import install


@pytest.fixture(scope="function")
def client():
    """Create a test client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope="function")
def backend(monkeypatch):
    """In-memory CRM and calendar wired in place of the HTTP clients."""
    return install(monkeypatch)


@pytest.fixture(autouse=True, scope="function")
def reset_generations():
    """Outbound generations are process-wide; start every test from zero."""
    generation_tracker.reset()
    yield
    generation_tracker.reset()


@pytest.fixture(autouse=True, scope="function")
def mock_stripe(monkeypatch):
    """
    Automatically mock Stripe API calls for all tests.
    This prevents any real Stripe API calls and ensures deterministic test behavior.
    """
    # Mock checkout session creation
    mock_session = MagicMock()
    mock_session.id = "cs_test_mock123"
    mock_session.url = "https://checkout.stripe.com/test/cs_test_mock123"

    def mock_create(*args, **kwargs):
        return mock_session

    monkeypatch.setattr("stripe.checkout.Session.create", mock_create)

    # Session lookup resolves the contact from metadata; unknown sessions carry none
    def mock_retrieve(session_id, *args, **kwargs):
        if session_id == "cs_test_with_contact":
            return {"id": session_id, "metadata": {"contact_id": "contact_from_session"}}
        return {"id": session_id, "metadata": {}}

    monkeypatch.setattr("stripe.checkout.Session.retrieve", mock_retrieve)

    # Mock webhook signature verification (success by default)
    # Tests that need to test signature failure should override this
    def mock_construct_event(payload, sig_header, secret, tolerance=300):
        """Mock webhook event construction - succeeds by default."""
        import json

        if isinstance(payload, bytes):
            return json.loads(payload.decode("utf-8"))
        return json.loads(payload)

    monkeypatch.setattr("stripe.Webhook.construct_event", mock_construct_event)

    yield
