"""
Booking actions - the side-effecting steps behind deterministic replies.

Each action performs its external calls and returns the custom-field updates
that record them; the caller decides what to say and persists the updates.
"""

import json
import logging
from datetime import datetime
from typing import Any

from studio_assistant.constants import fields as F
from studio_assistant.constants.event_types import EVENT_CALENDAR_NO_SLOTS_FALLBACK, EVENT_HOLD_CREATED
from studio_assistant.core.config import settings
from studio_assistant.services import system_event_service
from studio_assistant.services.holds.hold_lifecycle import clear_hold_fields
from studio_assistant.services.integrations import calendar_client, crm_client, stripe_service
from studio_assistant.services.scheduling import availability
from studio_assistant.services.scheduling.slot_parsing import resolve_selected_slot
from studio_assistant.services.scheduling.time_preferences import extract_time_preferences
from studio_assistant.services.state.canonical_state import (
    CanonicalState,
    Slot,
    build_canonical_state,
    slots_to_json,
)

logger = logging.getLogger(__name__)

SLOT_SOURCE_CONTEXT = "context"
SLOT_SOURCE_STATE = "state"
SLOT_SOURCE_REFETCH = "refetch"
SLOT_SOURCE_REGENERATED = "regenerated"


def deposit_amount_display() -> str:
    """Deposit amount in dollars without trailing zeros ("100", "99.5")."""
    amount = settings.deposit_amount_cents / 100
    return f"{amount:g}"


def offered_slot_updates(slots: list[Slot]) -> dict[str, Any]:
    """Fields recording an offered list, stored verbatim for later selection matching."""
    return {
        F.FIELD_LAST_SENT_SLOTS: slots_to_json(slots),
        F.FIELD_TIMES_SENT: True,
        F.FIELD_CONSULT_EXPLAINED: True,
    }


async def find_slots(
    state: CanonicalState,
    message_text: str | None,
    contact_id: str | None,
    now: datetime | None = None,
) -> list[Slot]:
    """
    Available slots for the preferences in the message (else the stored timeline).

    Never raises; an availability failure yields an empty list.
    """
    prefs = extract_time_preferences(message_text, fallback_text=state.timeline)
    try:
        slots = await availability.get_available_slots(state, prefs, contact_id=contact_id, now=now)
    except Exception as e:
        logger.error(f"Availability lookup failed for {contact_id}: {e}", exc_info=True)
        slots = []
    if not slots:
        system_event_service.warn(
            EVENT_CALENDAR_NO_SLOTS_FALLBACK,
            contact_id=contact_id,
            payload={"week": prefs.week, "day": prefs.day, "time_window": prefs.time_window},
        )
    return slots[: settings.max_offered_slots]


def _coerce_slots(raw: Any) -> list[Slot]:
    slots = []
    for entry in raw or []:
        slot = Slot.from_dict(entry)
        if slot is not None:
            slots.append(slot)
    return slots


async def recover_offered_slots(
    state: CanonicalState,
    contact_id: str | None,
    message_text: str | None,
    context: dict | None = None,
    now: datetime | None = None,
) -> tuple[list[Slot], str | None]:
    """
    The list the lead is choosing from.

    Tried in order: this turn's context, the canonical state, a fresh read of
    the contact (the inbound payload may have carried a truncated field), and
    finally a new availability query.

    Returns:
        (slots, source) with source None when nothing could be recovered
    """
    slots = _coerce_slots((context or {}).get("slots"))
    if slots:
        return slots, SLOT_SOURCE_CONTEXT

    if state.last_sent_slots:
        return list(state.last_sent_slots), SLOT_SOURCE_STATE

    if contact_id:
        fresh_contact = await crm_client.get_contact(contact_id)
        fresh_slots = list(build_canonical_state(fresh_contact).last_sent_slots) if fresh_contact else []
        if fresh_slots:
            logger.info(f"Recovered {len(fresh_slots)} offered slots for {contact_id} from CRM")
            return fresh_slots, SLOT_SOURCE_REFETCH

    regenerated = await find_slots(state, message_text, contact_id, now=now)
    if regenerated:
        logger.info(f"No offered slots on record for {contact_id}, regenerated {len(regenerated)}")
        return regenerated, SLOT_SOURCE_REGENERATED
    return [], None


def create_deposit_link(contact_id: str) -> dict:
    """
    Deposit checkout link for the configured amount.

    Raises:
        ValueError / stripe.error.StripeError: If the link cannot be created
    """
    link = stripe_service.create_deposit_link_for_contact(
        contact_id,
        amount_cents=settings.deposit_amount_cents,
        description=settings.deposit_description,
    )
    if not link.get("url"):
        raise ValueError(f"Deposit link for {contact_id} has no url")
    return link


async def _cancel_quietly(contact_id: str, appointment_id: str, calendar_id: str | None = None) -> None:
    try:
        await calendar_client.update_appointment_status(
            appointment_id, F.APPOINTMENT_STATUS_CANCELLED, calendar_id
        )
    except Exception as e:
        logger.warning(f"Could not cancel appointment {appointment_id} for {contact_id}: {e}")


async def place_hold(
    contact_id: str,
    state: CanonicalState,
    slot: Slot,
    now: datetime,
) -> tuple[dict[str, Any], str]:
    """
    Hold the slot (unconfirmed appointment) and create its deposit link.

    The appointment is created before the link so the link always refers to a
    real booking. If the link fails the new appointments are cancelled again.
    A previous unpaid hold is cancelled only once the new hold is in place, so
    a lead never holds two slots and never loses both.

    Returns:
        (field updates, deposit url)

    Raises:
        Exception: Any calendar or payment failure (nothing is persisted)
    """
    booked = await availability.create_consult_appointment(contact_id, slot, state, deposit_paid=False)
    try:
        link = create_deposit_link(contact_id)
    except Exception:
        await _cancel_quietly(contact_id, booked.appointment_id)
        if booked.translator_appointment_id:
            await _cancel_quietly(contact_id, booked.translator_appointment_id, slot.translator_calendar_id)
        raise

    if state.has_active_hold and state.hold_appointment_id != booked.appointment_id:
        await _cancel_quietly(contact_id, state.hold_appointment_id)

    timestamp = now.isoformat()
    updates = {
        F.FIELD_HOLD_APPOINTMENT_ID: booked.appointment_id,
        F.FIELD_HOLD_CREATED_AT: timestamp,
        F.FIELD_HOLD_LAST_ACTIVITY_AT: timestamp,
        F.FIELD_HOLD_WARNING_SENT: False,
        F.FIELD_HOLD_SLOT: json.dumps(slot.to_dict()),
        F.FIELD_LAST_RELEASED_SLOT: None,
        F.FIELD_DEPOSIT_LINK_SENT: True,
        F.FIELD_DEPOSIT_LINK_URL: link["url"],
        F.FIELD_CONSULT_EXPLAINED: True,
    }
    system_event_service.info(
        EVENT_HOLD_CREATED,
        contact_id=contact_id,
        payload={
            "appointment_id": booked.appointment_id,
            "start_time": slot.start_time,
            "artist": slot.artist,
            "translator_appointment_id": booked.translator_appointment_id,
        },
    )
    return updates, link["url"]


async def book_paid_consult(contact_id: str, state: CanonicalState, slot: Slot) -> dict[str, Any]:
    """Book a confirmed consult for a lead whose deposit is already paid."""
    booked = await availability.create_consult_appointment(contact_id, slot, state, deposit_paid=True)
    return {
        F.FIELD_CONSULT_APPOINTMENT_ID: booked.appointment_id,
        F.FIELD_APPOINTMENT_BOOKED: True,
        F.FIELD_CONSULT_EXPLAINED: True,
    }


def cancellation_target(state: CanonicalState) -> str | None:
    """Upcoming confirmed appointment, else the active hold."""
    return state.upcoming_appointment_id or state.hold_appointment_id


async def cancel_appointment(state: CanonicalState, target_id: str) -> dict[str, Any]:
    """
    Cancel an appointment and return the fields that forget it.

    Raises:
        Exception: If the calendar refuses the cancellation (nothing to clear then)
    """
    await calendar_client.update_appointment_status(target_id, F.APPOINTMENT_STATUS_CANCELLED)
    if target_id == state.hold_appointment_id:
        updates = clear_hold_fields()
        updates[F.FIELD_LAST_SENT_SLOTS] = None
        return updates
    return {
        F.FIELD_CONSULT_APPOINTMENT_ID: None,
        F.FIELD_APPOINTMENT_ID: None,
        F.FIELD_APPOINTMENT_BOOKED: False,
        F.FIELD_LAST_SENT_SLOTS: None,
        F.FIELD_TIMES_SENT: False,
    }


def released_slot_still_open(state: CanonicalState, slots: list[Slot]) -> Slot | None:
    """The previously released hold, if it is among the fresh availability."""
    if not state.last_released_slot:
        return None
    return resolve_selected_slot(state.last_released_slot, slots)
