"""
Calendar client - appointment CRUD against the CRM calendars API.
"""

import logging

from studio_assistant.core.config import settings
from studio_assistant.services.integrations.crm_client import crm_request

logger = logging.getLogger(__name__)


def _calendar_version() -> str:
    return settings.crm_calendar_api_version


async def create_appointment(
    *,
    calendar_id: str,
    contact_id: str,
    start_time: str,
    end_time: str,
    title: str = "Consultation",
    description: str = "",
    appointment_status: str = "new",
    assigned_user_id: str | None = None,
    address: str | None = "Zoom",
) -> dict:
    """
    Create an appointment on a calendar.

    Raises:
        ValueError: If required identifiers are missing
        CrmError: If the request fails
    """
    if not calendar_id or not contact_id:
        raise ValueError("calendar_id and contact_id are required for create_appointment")
    if not start_time or not end_time:
        raise ValueError("start_time and end_time are required for create_appointment")

    payload = {
        "title": title,
        "appointmentStatus": appointment_status,
        "description": description,
        "calendarId": calendar_id,
        "locationId": settings.crm_location_id,
        "contactId": contact_id,
        "startTime": start_time,
        "endTime": end_time,
        "ignoreFreeSlotValidation": True,
        "toNotify": False,
    }
    if address:
        payload["address"] = address
        payload["meetingLocationType"] = "custom"
    if assigned_user_id:
        payload["assignedUserId"] = assigned_user_id

    appointment = await crm_request(
        "POST", "/calendars/events/appointments", json=payload, api_version=_calendar_version()
    )
    logger.info(
        f"Created appointment {appointment.get('id')} on {calendar_id} for {contact_id} "
        f"({appointment_status})"
    )
    return appointment


async def list_appointments_for_contact(contact_id: str) -> list[dict]:
    data = await crm_request(
        "GET", f"/contacts/{contact_id}/appointments", api_version=_calendar_version()
    )
    return data.get("events") or []


async def update_appointment_status(
    appointment_id: str, status: str, calendar_id: str | None = None
) -> dict:
    """Set an appointment's status ("new", "confirmed", "cancelled")."""
    if not appointment_id or not status:
        raise ValueError("appointment_id and status are required")
    payload = {"appointmentStatus": status, "toNotify": False}
    if calendar_id:
        payload["calendarId"] = calendar_id
    result = await crm_request(
        "PUT",
        f"/calendars/events/appointments/{appointment_id}",
        json=payload,
        api_version=_calendar_version(),
    )
    logger.info(f"Updated appointment {appointment_id} status -> {status}")
    return result


async def reschedule_appointment(
    appointment_id: str,
    *,
    start_time: str,
    end_time: str,
    calendar_id: str | None = None,
    assigned_user_id: str | None = None,
    appointment_status: str | None = None,
) -> dict:
    if not appointment_id or not start_time or not end_time:
        raise ValueError("appointment_id, start_time and end_time are required")
    payload = {
        "startTime": start_time,
        "endTime": end_time,
        "ignoreFreeSlotValidation": True,
        "toNotify": False,
    }
    if calendar_id:
        payload["calendarId"] = calendar_id
    if assigned_user_id:
        payload["assignedUserId"] = assigned_user_id
    if appointment_status:
        payload["appointmentStatus"] = appointment_status
    result = await crm_request(
        "PUT",
        f"/calendars/events/appointments/{appointment_id}",
        json=payload,
        api_version=_calendar_version(),
    )
    logger.info(f"Rescheduled appointment {appointment_id} -> {start_time}")
    return result
