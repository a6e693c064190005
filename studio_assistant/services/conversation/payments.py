"""
Deposit confirmation - applied when the payment provider reports a completed checkout.

Replays are no-ops: a contact whose deposit is already recorded as paid is
left untouched and receives no second confirmation.
"""

import logging
from typing import Any

from studio_assistant.constants import fields as F
from studio_assistant.constants import stages as S
from studio_assistant.constants.event_types import EVENT_DEPOSIT_PAID, EVENT_HOLD_CONFIRMED
from studio_assistant.services import system_event_service
from studio_assistant.services.holds.hold_lifecycle import clear_hold_fields
from studio_assistant.services.integrations import calendar_client, crm_client
from studio_assistant.services.messaging.message_composer import render_message
from studio_assistant.services.messaging.outbound import build_channel_context, send_single
from studio_assistant.services.pipeline import stage_resolver
from studio_assistant.services.scheduling.slot_parsing import format_slot_display
from studio_assistant.services.state.canonical_state import (
    CanonicalState,
    build_canonical_state,
    merge_custom_fields,
)
from studio_assistant.utils.datetime_utils import parse_timestamp

logger = logging.getLogger(__name__)

STATUS_CONFIRMED = "confirmed"
STATUS_ALREADY_PAID = "already_paid"
STATUS_CONTACT_NOT_FOUND = "contact_not_found"


def _hold_display(state: CanonicalState) -> str | None:
    """Display text of the held slot, formatted from its start time if needed."""
    slot = state.hold_slot or {}
    display = slot.get("displayText") or slot.get("display_text")
    if display:
        return display
    start = parse_timestamp(slot.get("startTime") or slot.get("start_time"))
    return format_slot_display(start) if start else None


def _confirmation_message(state: CanonicalState, display: str | None, contact_id: str) -> str:
    if state.consultation_type == F.CONSULTATION_MESSAGE:
        return render_message("deposit_confirmed_message", contact_id=contact_id)
    if display:
        return render_message("deposit_confirmed_appointment", contact_id=contact_id, display=display)
    return render_message("deposit_confirmed", contact_id=contact_id)


async def confirm_deposit(contact_id: str, session_id: str | None = None) -> dict[str, Any]:
    """
    Record a paid deposit for a contact.

    Marks the deposit paid, confirms the held appointment (which becomes the
    contact's consult appointment), clears the hold, moves the pipeline to
    QUALIFIED and sends a confirmation matching the consultation type.

    Args:
        contact_id: CRM contact id resolved from the checkout session
        session_id: Checkout session id (logged only)

    Returns:
        {"status": "confirmed" | "already_paid" | "contact_not_found", ...}

    Raises:
        CrmError: If the paid flag itself cannot be written
    """
    contact = await crm_client.get_contact(contact_id)
    if not contact:
        logger.error(f"Deposit paid for unknown contact {contact_id} (session {session_id})")
        return {"status": STATUS_CONTACT_NOT_FOUND, "contact_id": contact_id}

    state = build_canonical_state(contact)
    if state.deposit_paid:
        logger.info(f"Deposit for {contact_id} already recorded (session {session_id}), skipping")
        return {"status": STATUS_ALREADY_PAID, "contact_id": contact_id}

    # Written alone first so a later failure can't leave a paid lead marked unpaid
    await crm_client.update_system_fields(contact_id, {F.FIELD_DEPOSIT_PAID: True})
    system_event_service.info(
        EVENT_DEPOSIT_PAID,
        contact_id=contact_id,
        payload={"session_id": session_id, "hold_appointment_id": state.hold_appointment_id},
    )

    display = _hold_display(state)
    updates: dict[str, Any] = {F.FIELD_DEPOSIT_PAID: True}
    confirmed_appointment_id = None
    if state.hold_appointment_id:
        try:
            await calendar_client.update_appointment_status(
                state.hold_appointment_id, F.APPOINTMENT_STATUS_CONFIRMED
            )
            confirmed_appointment_id = state.hold_appointment_id
        except Exception as e:
            logger.error(
                f"Failed to confirm hold {state.hold_appointment_id} for {contact_id}: {e}",
                exc_info=True,
            )
        if confirmed_appointment_id:
            updates.update(clear_hold_fields())
            updates[F.FIELD_CONSULT_APPOINTMENT_ID] = confirmed_appointment_id
            updates[F.FIELD_APPOINTMENT_BOOKED] = True
            try:
                await crm_client.update_system_fields(contact_id, updates)
            except Exception as e:
                logger.error(f"Failed to record confirmed hold for {contact_id}: {e}", exc_info=True)
            system_event_service.info(
                EVENT_HOLD_CONFIRMED,
                contact_id=contact_id,
                payload={"appointment_id": confirmed_appointment_id, "display": display},
            )

    merged = merge_custom_fields(contact, updates)
    try:
        await stage_resolver.transition_to_stage(contact_id, S.STAGE_QUALIFIED, contact=merged)
    except Exception as e:
        logger.error(f"Failed to move {contact_id} to QUALIFIED: {e}", exc_info=True)

    body = _confirmation_message(state, display if confirmed_appointment_id else None, contact_id)
    sent = await send_single(contact_id, body, build_channel_context(contact))

    return {
        "status": STATUS_CONFIRMED,
        "contact_id": contact_id,
        "appointment_id": confirmed_appointment_id,
        "message_sent": sent,
    }
