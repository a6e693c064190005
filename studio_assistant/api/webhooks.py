import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from studio_assistant.constants.event_types import (
    EVENT_STRIPE_CONTACT_NOT_RESOLVED,
    EVENT_STRIPE_SIGNATURE_VERIFICATION_FAILURE,
    EVENT_STRIPE_WEBHOOK_FAILURE,
)
from studio_assistant.middleware.correlation_id import get_correlation_id
from studio_assistant.services import system_event_service
from studio_assistant.services.conversation.appointment_sync import sync_appointment_siblings
from studio_assistant.services.conversation.controller import handle_inbound_message
from studio_assistant.services.conversation.payments import confirm_deposit
from studio_assistant.services.integrations import stripe_service
from studio_assistant.services.messaging.outbound import build_channel_context, generation_tracker
from studio_assistant.services.state.canonical_state import normalize_custom_fields, normalize_display_name

logger = logging.getLogger(__name__)

router = APIRouter()

# Payload keys worth carrying into the turn even when not in a custom-field bag
_PAYLOAD_FIELD_MARKERS = ("tattoo", "deposit", "consult", "translator", "slot", "hold")


def _webhook_error_response(status_code: int, error: str, **content_extras) -> JSONResponse:
    """Build JSONResponse for webhook errors: {"received": False, "error": ...}."""
    content: dict = {"received": False, "error": error, **content_extras}
    return JSONResponse(status_code=status_code, content=content)


def _stripe_error_response(status_code: int, error: str, **content_extras) -> JSONResponse:
    """Build JSONResponse for Stripe webhook errors: {"error": ...}."""
    content: dict = {"error": error, **content_extras}
    return JSONResponse(status_code=status_code, content=content)


async def _read_json(request: Request) -> tuple[dict | None, JSONResponse | None]:
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Invalid JSON payload on {request.url.path}: {e}")
        return None, _webhook_error_response(400, "Invalid JSON payload")
    if not isinstance(payload, dict):
        return None, _webhook_error_response(400, "Payload must be a JSON object")
    return payload, None


async def _verify_stripe_webhook(request: Request) -> tuple[dict | None, JSONResponse | None]:
    """
    Read raw body, check stripe-signature header, verify Stripe webhook signature.
    Returns (event_dict, None) on success; (None, error_response) on failure.
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        return None, _stripe_error_response(400, "Missing stripe-signature header")
    try:
        event = stripe_service.verify_webhook_signature(body, signature)
    except ValueError as e:
        logger.warning(f"Invalid Stripe webhook signature: {str(e)}")
        system_event_service.warn(
            EVENT_STRIPE_SIGNATURE_VERIFICATION_FAILURE,
            payload={"error": str(e)[:200]},
        )
        return None, _stripe_error_response(400, "Invalid webhook signature")
    return event, None


def extract_contact_id(payload: dict[str, Any]) -> str | None:
    contact = payload.get("contact") if isinstance(payload.get("contact"), dict) else {}
    contact_id = (
        payload.get("contactId")
        or payload.get("contact_id")
        or contact.get("id")
        or contact.get("contactId")
    )
    return str(contact_id) if contact_id else None


def extract_message_text(payload: dict[str, Any]) -> str:
    """Message body from any of the shapes the CRM posts (DMs nest it under message.body)."""
    message = payload.get("message")
    if isinstance(message, dict) and message.get("body"):
        return str(message["body"])
    if isinstance(message, str):
        return message
    custom_data = payload.get("customData") if isinstance(payload.get("customData"), dict) else {}
    body = payload.get("body")
    if isinstance(body, dict):
        body = body.get("text") or body.get("message")
    return str(payload.get("text") or custom_data.get("messageBody") or body or "")


def extract_payload_custom_fields(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Custom fields carried on the webhook payload.

    Explicit bags (customData, customFields) are taken whole; loose top-level
    keys only when they look like booking fields.
    """
    fields: dict[str, Any] = {}
    for key, value in payload.items():
        if value is None or value == "" or isinstance(value, (dict, list)):
            continue
        snake_key = normalize_display_name(key) if (" " in key or key[:1].isupper()) else key
        if snake_key and any(marker in snake_key for marker in _PAYLOAD_FIELD_MARKERS):
            fields[snake_key] = value
    for bag_key in ("customData", "customFields", "customField"):
        fields.update(normalize_custom_fields(payload.get(bag_key)))
    fields.pop("message_body", None)
    fields.pop("messageBody", None)
    return fields


def _medium(payload: dict[str, Any]) -> str | None:
    message = payload.get("message") if isinstance(payload.get("message"), dict) else {}
    medium = payload.get("medium") or payload.get("source") or message.get("medium")
    return str(medium) if medium else None


@router.post("/crm/messages")
async def crm_inbound_message(request: Request):
    """
    Handle an inbound lead message from the CRM.

    Bumps the contact's outbound generation first so any reply still being
    sent for an earlier message stops at its next bubble.
    """
    correlation_id = get_correlation_id(request)
    logger.info(
        f"crm.inbound_received correlation_id={correlation_id}",
        extra={"correlation_id": correlation_id, "event_type": "crm.inbound_received"},
    )

    payload, err_response = await _read_json(request)
    if err_response is not None:
        return err_response

    contact_id = extract_contact_id(payload)
    if not contact_id:
        logger.warning("CRM message webhook missing contact id")
        return {"received": True, "type": "missing-contact-id"}

    generation = generation_tracker.bump(contact_id)
    message_text = extract_message_text(payload)
    channel_context = build_channel_context(
        payload.get("contact") if isinstance(payload.get("contact"), dict) else payload,
        conversation_id=payload.get("conversationId") or payload.get("conversation_id"),
        medium=_medium(payload),
    )

    result = await handle_inbound_message(
        contact_id,
        message_text,
        payload_fields=extract_payload_custom_fields(payload),
        channel_context=channel_context,
        generation=generation,
    )
    return {
        "received": True,
        "type": "message",
        "contact_id": contact_id,
        "generation": generation,
        "internal_notes": result.internal_notes,
        "sent": result.sent,
        "aborted": result.aborted,
    }


@router.post("/stripe")
async def stripe_webhook(request: Request):
    """
    Handle Stripe webhook events (payment confirmations).

    Handles:
    - checkout.session.completed: Deposit payment confirmed

    Anything past signature verification is acknowledged with 200 so Stripe
    doesn't retry; failures are logged as system events instead.
    """
    event, err_response = await _verify_stripe_webhook(request)
    if err_response is not None:
        return err_response

    event_type = event.get("type")
    data = event.get("data")
    session = data.get("object") if isinstance(data, dict) else None
    if event_type != "checkout.session.completed" or not isinstance(session, dict):
        return {"received": True, "type": "ignored", "event_type": event_type}

    session_id = session.get("id")
    metadata = session.get("metadata") or {}
    contact_id = metadata.get("contact_id") or session.get("client_reference_id")
    if not contact_id:
        contact_id = stripe_service.get_contact_id_from_order(session_id)

    if not contact_id:
        logger.warning(f"Could not resolve a contact for checkout session {session_id}")
        system_event_service.warn(EVENT_STRIPE_CONTACT_NOT_RESOLVED, payload={"session_id": session_id})
        return {"received": True, "type": "contact_not_resolved", "checkout_session_id": session_id}

    try:
        result = await confirm_deposit(contact_id, session_id=session_id)
    except Exception as e:
        logger.error(f"Deposit confirmation failed for {contact_id}: {e}", exc_info=True)
        system_event_service.error(
            EVENT_STRIPE_WEBHOOK_FAILURE,
            contact_id=contact_id,
            payload={"session_id": session_id},
            exc=e,
        )
        return {"received": True, "type": "error", "contact_id": contact_id}

    return {
        "received": True,
        "type": result["status"],
        "contact_id": contact_id,
        "checkout_session_id": session_id,
    }


@router.post("/appointments")
async def appointment_webhook(request: Request):
    """Mirror appointment cancellations and reschedules onto paired appointments."""
    payload, err_response = await _read_json(request)
    if err_response is not None:
        return err_response

    result = await sync_appointment_siblings(payload)
    return {"received": True, "type": "appointment", **result}
