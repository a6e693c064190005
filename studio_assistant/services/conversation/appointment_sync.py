"""
Appointment sibling sync - keeps artist and translator bookings in step.

A translated consult is two appointments: one on the artist's calendar and one
on the translator's. When the calendar reports one of them cancelled or moved,
the other ("sibling") gets the same change. Siblings are matched by the
PairingKey written into both descriptions at booking time, falling back to an
identical start time on the other calendar set.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from dateutil import parser as date_parser

from studio_assistant.constants import fields as F
from studio_assistant.constants.event_types import EVENT_APPOINTMENT_SIBLING_SYNC
from studio_assistant.services import system_event_service
from studio_assistant.services.holds.hold_lifecycle import clear_hold_fields
from studio_assistant.services.integrations import calendar_client, crm_client
from studio_assistant.services.scheduling.studio_config import (
    get_artist_calendar_ids,
    get_timezone,
    get_translator_calendar_ids,
    get_translator_user_id,
)
from studio_assistant.services.state.canonical_state import build_canonical_state

logger = logging.getLogger(__name__)

CANCELLED_STATUSES = frozenset({"cancelled", "canceled"})

_PAIRING_KEY = re.compile(r"PairingKey:([A-F0-9]{8})", re.IGNORECASE)
_HAS_OFFSET = re.compile(r"(Z|[+-]\d{2}:\d{2})$")


@dataclass(frozen=True)
class AppointmentEvent:
    contact_id: str | None
    appointment_id: str | None
    calendar_id: str | None
    raw_start_time: str | None
    start_time: str | None
    end_time: str | None
    status: str
    notes: str = ""

    @property
    def is_cancelled(self) -> bool:
        return self.status in CANCELLED_STATUSES

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AppointmentEvent":
        """Pull the appointment fields out of a calendar webhook payload."""
        payload = payload or {}
        calendar = payload.get("calendar") or {}
        contact = payload.get("contact") if isinstance(payload.get("contact"), dict) else {}
        raw_start = calendar.get("startTime") or payload.get("startTime")
        raw_end = calendar.get("endTime") or payload.get("endTime")
        # The calendar misspells the status key on some deliveries
        status = (
            calendar.get("appoinmentStatus")
            or calendar.get("appointmentStatus")
            or calendar.get("status")
            or payload.get("appointmentStatus")
            or ""
        )
        return cls(
            contact_id=payload.get("contact_id") or payload.get("contactId") or contact.get("id"),
            appointment_id=calendar.get("appointmentId") or payload.get("appointmentId"),
            calendar_id=calendar.get("id") or calendar.get("calendarId") or payload.get("calendarId"),
            raw_start_time=raw_start,
            start_time=ensure_timezone(raw_start),
            end_time=ensure_timezone(raw_end),
            status=str(status).strip().lower(),
            notes=calendar.get("notes") or payload.get("notes") or "",
        )


def ensure_timezone(raw: str | None) -> str | None:
    """
    Attach the studio's UTC offset to a naive timestamp.

    The calendar sends local times without an offset but expects them back with
    one. Values that already carry an offset (or can't be parsed) pass through.
    """
    if not raw or _HAS_OFFSET.search(raw):
        return raw
    try:
        naive = date_parser.isoparse(raw)
    except (ValueError, OverflowError):
        return raw
    if naive.tzinfo is not None:
        return raw
    return get_timezone().localize(naive).isoformat()


def extract_pairing_key(notes: str | None) -> str | None:
    if not notes:
        return None
    match = _PAIRING_KEY.search(notes)
    return match.group(1).upper() if match else None


def _local_wall_time(raw: str | None) -> datetime | None:
    """Start time without its offset, for comparing naive and aware spellings."""
    if not raw:
        return None
    try:
        return date_parser.isoparse(raw).replace(tzinfo=None)
    except (ValueError, OverflowError):
        return None


def _status_of(appointment: dict) -> str:
    return str(appointment.get("appointmentStatus") or appointment.get("status") or "").lower()


def _notes_of(appointment: dict) -> str:
    return appointment.get("notes") or appointment.get("description") or ""


def find_siblings(
    event: AppointmentEvent, appointments: list[dict], sibling_calendars: set[str]
) -> list[dict]:
    """
    Appointments on the other calendar set that belong with the event's appointment.

    PairingKey matches win; only when none match is an identical start time used.
    Siblings already cancelled are skipped for cancellation syncs.
    """

    def eligible(appointment: dict) -> bool:
        if appointment.get("calendarId") not in sibling_calendars:
            return False
        if appointment.get("id") == event.appointment_id:
            return False
        return not (event.is_cancelled and _status_of(appointment) in CANCELLED_STATUSES)

    candidates = [a for a in appointments if eligible(a)]

    pairing_key = extract_pairing_key(event.notes)
    if pairing_key:
        paired = [a for a in candidates if extract_pairing_key(_notes_of(a)) == pairing_key]
        if paired:
            return paired

    start = _local_wall_time(event.raw_start_time)
    if start is None:
        return []
    return [a for a in candidates if _local_wall_time(a.get("startTime")) == start]


async def _clear_cancelled_hold(event: AppointmentEvent) -> bool:
    contact = await crm_client.get_contact(event.contact_id)
    state = build_canonical_state(contact)
    if not state.hold_appointment_id or state.hold_appointment_id != event.appointment_id:
        return False
    try:
        await crm_client.update_system_fields(event.contact_id, clear_hold_fields())
    except Exception as e:
        logger.error(f"Failed to clear cancelled hold for {event.contact_id}: {e}", exc_info=True)
        return False
    logger.info(f"Hold {event.appointment_id} cancelled on the calendar, cleared for {event.contact_id}")
    return True


async def _sync_sibling(event: AppointmentEvent, sibling: dict) -> str | None:
    """Apply the event's change to one sibling; returns the action taken."""
    sibling_id = sibling.get("id")
    sibling_calendar = sibling.get("calendarId")
    if event.is_cancelled:
        await calendar_client.update_appointment_status(
            sibling_id, F.APPOINTMENT_STATUS_CANCELLED, sibling_calendar
        )
        return "cancelled"

    if not event.start_time or not event.end_time:
        return None
    if sibling.get("startTime") == event.start_time and sibling.get("endTime") == event.end_time:
        logger.info(f"Sibling {sibling_id} already at {event.start_time}, skipping")
        return None
    await calendar_client.reschedule_appointment(
        sibling_id,
        start_time=event.start_time,
        end_time=event.end_time,
        calendar_id=sibling_calendar,
        assigned_user_id=sibling.get("assignedUserId") or get_translator_user_id(sibling_calendar),
    )
    return "rescheduled"


async def sync_appointment_siblings(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Mirror a cancellation or reschedule onto the sibling appointment(s).

    Never raises; the outcome is returned for logging and the webhook response.

    Returns:
        {"status": "synced" | "skipped" | "error", "reason": ..., "siblings": [...]}
    """
    event = AppointmentEvent.from_payload(payload)
    if not event.contact_id or not event.appointment_id or not event.calendar_id:
        logger.warning("Appointment webhook missing contact, appointment or calendar id")
        return {"status": "skipped", "reason": "missing_fields", "siblings": []}

    hold_cleared = False
    if event.is_cancelled:
        try:
            hold_cleared = await _clear_cancelled_hold(event)
        except Exception as e:
            logger.error(f"Hold check failed for cancelled {event.appointment_id}: {e}", exc_info=True)

    artist_calendars = get_artist_calendar_ids()
    translator_calendars = get_translator_calendar_ids()
    if event.calendar_id in artist_calendars:
        sibling_calendars = translator_calendars
    elif event.calendar_id in translator_calendars:
        sibling_calendars = artist_calendars
    else:
        logger.info(f"Calendar {event.calendar_id} is not an artist or translator calendar, no sync")
        return {"status": "skipped", "reason": "unknown_calendar", "siblings": [], "hold_cleared": hold_cleared}

    try:
        appointments = await calendar_client.list_appointments_for_contact(event.contact_id)
    except Exception as e:
        logger.error(f"Could not list appointments for {event.contact_id}: {e}", exc_info=True)
        return {"status": "error", "reason": "list_failed", "siblings": [], "hold_cleared": hold_cleared}

    siblings = find_siblings(event, appointments, sibling_calendars)
    if not siblings:
        logger.info(f"No sibling found for appointment {event.appointment_id}")
        return {"status": "skipped", "reason": "no_sibling", "siblings": [], "hold_cleared": hold_cleared}

    results = []
    for sibling in siblings:
        try:
            action = await _sync_sibling(event, sibling)
        except Exception as e:
            logger.error(f"Failed to sync sibling {sibling.get('id')}: {e}", exc_info=True)
            action = "failed"
        results.append({"id": sibling.get("id"), "action": action})

    system_event_service.info(
        EVENT_APPOINTMENT_SIBLING_SYNC,
        contact_id=event.contact_id,
        payload={
            "appointment_id": event.appointment_id,
            "status": event.status,
            "siblings": results,
        },
    )
    return {"status": "synced", "reason": None, "siblings": results, "hold_cleared": hold_cleared}
