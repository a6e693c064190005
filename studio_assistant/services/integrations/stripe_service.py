"""
Stripe service - deposit checkout links and webhook verification.
"""

import json
import logging

import stripe

from studio_assistant.core.config import settings

logger = logging.getLogger(__name__)

# Initialize Stripe
stripe.api_key = settings.stripe_secret_key

# Check if we're in test mode (stub API key)
STRIPE_TEST_MODE = settings.stripe_secret_key.startswith("sk_test_")


def _is_stub_key() -> bool:
    return settings.stripe_secret_key == "sk_test_test"


def create_deposit_link_for_contact(
    contact_id: str,
    amount_cents: int | None = None,
    description: str | None = None,
) -> dict:
    """
    Create a Stripe Checkout session for a consult deposit.

    Args:
        contact_id: CRM contact id (stored in metadata and client_reference_id)
        amount_cents: Amount in cents (default: settings.deposit_amount_cents)
        description: Line item description

    Returns:
        dict with url and payment_link_id

    Raises:
        ValueError: If contact_id is missing
        stripe.error.StripeError: If the Stripe call fails
    """
    if not contact_id:
        raise ValueError("contact_id is required for create_deposit_link_for_contact")
    amount_cents = amount_cents if amount_cents is not None else settings.deposit_amount_cents
    description = description or settings.deposit_description

    # In test mode with stub key, return mock data
    if STRIPE_TEST_MODE and _is_stub_key():
        logger.info(f"[TEST MODE] Would create Stripe checkout session for contact {contact_id}")
        mock_session_id = f"cs_test_{contact_id}_{amount_cents}"
        return {
            "url": f"https://checkout.stripe.com/test/{mock_session_id}",
            "payment_link_id": mock_session_id,
        }

    try:
        checkout_session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": settings.deposit_currency,
                        "product_data": {"name": description},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=settings.stripe_success_url,
            cancel_url=settings.stripe_cancel_url,
            metadata={"contact_id": contact_id, "type": "deposit", "amount_cents": str(amount_cents)},
            client_reference_id=contact_id,
        )
    except stripe.error.StripeError as e:
        logger.error(f"Stripe error creating deposit link for contact {contact_id}: {e}")
        raise

    logger.info(f"Created Stripe checkout session {checkout_session.id} for contact {contact_id}")
    return {"url": checkout_session.url, "payment_link_id": checkout_session.id}


def get_contact_id_from_order(session_id: str | None) -> str | None:
    """
    Resolve the contact id behind a checkout session (metadata, then client_reference_id).

    Returns None when the session can't be found.
    """
    if not session_id:
        return None
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.error.StripeError as e:
        logger.error(f"Stripe error retrieving checkout session {session_id}: {e}")
        return None
    metadata = session.get("metadata") or {}
    return metadata.get("contact_id") or session.get("client_reference_id")


def verify_webhook_signature(payload: bytes, signature: str) -> dict:
    """
    Verify Stripe webhook signature.

    Args:
        payload: Raw request body (bytes)
        signature: Stripe signature from header

    Returns:
        Parsed event object if valid

    Raises:
        ValueError: If the payload or signature is invalid
    """
    # In test mode with stub secret, accept any signature and parse payload as JSON
    if STRIPE_TEST_MODE and settings.stripe_webhook_secret == "whsec_test":
        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Invalid test webhook payload: {e}") from e
        logger.info(f"[TEST MODE] Accepting test Stripe webhook event: {event.get('type')}")
        return event

    try:
        return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    except stripe.error.SignatureVerificationError as e:
        logger.error(f"Invalid Stripe webhook signature: {e}")
        raise ValueError(str(e)) from e
    except ValueError as e:
        logger.error(f"Invalid Stripe webhook payload: {e}")
        raise
