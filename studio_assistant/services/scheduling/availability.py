"""
Availability service - builds consult slots across artists and books hold appointments.

Base times come from the consult hours in studio.yml (one start hour per
preferred time window); each artist calendar gets the same base times, which
are then merged time-first, de-duplicated and filtered against the contact's
existing appointments.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from studio_assistant.constants import fields as F
from studio_assistant.core.config import settings
from studio_assistant.services.integrations import calendar_client
from studio_assistant.services.scheduling.slot_parsing import DAYS, format_slot_display
from studio_assistant.services.scheduling.studio_config import (
    CONSULT_MODE_ONLINE,
    get_artists,
    get_calendar_id_for_artist,
    get_consult_config,
    get_timezone,
    get_translator_user_id,
    get_translators,
    get_user_id_for_artist,
    get_window_hour,
)
from studio_assistant.services.scheduling.time_preferences import TimePreferences
from studio_assistant.services.state.canonical_state import CanonicalState, Slot
from studio_assistant.utils.datetime_utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

# Upper bound on days walked forward when generating slots
MAX_LOOKAHEAD_DAYS = 60
PAIRING_KEY_PREFIX = "PairingKey:"


@dataclass(frozen=True)
class BookedConsult:
    appointment_id: str
    status: str
    translator_appointment_id: str | None = None
    pairing_key: str | None = None


def _start_date(local_now: datetime, prefs: TimePreferences) -> date:
    today = local_now.date()
    start = today

    if prefs.month and prefs.day_of_month:
        year = prefs.year or today.year
        try:
            start = date(year, prefs.month, prefs.day_of_month)
        except ValueError:
            start = today
        else:
            # "week of Jan 12" said in December means next year
            if start < today and not prefs.year:
                try:
                    start = date(year + 1, prefs.month, prefs.day_of_month)
                except ValueError:
                    start = today
            start = max(start, today)
    elif prefs.week == "next":
        start = today + timedelta(days=7 - today.weekday())

    if prefs.day and prefs.day in DAYS:
        days_ahead = (DAYS[prefs.day] - start.weekday()) % 7
        if days_ahead == 0 and start == today:
            days_ahead = 7
        start += timedelta(days=days_ahead)

    return start


def generate_suggested_slots(
    now: datetime | None = None,
    prefs: TimePreferences | None = None,
    count: int | None = None,
) -> list[dict[str, datetime]]:
    """
    Generate candidate consult times from preferences.

    One time per day at the preferred window's start hour, weekdays only unless a
    weekday was requested (then the same weekday on following weeks).

    Returns:
        List of dicts with 'start' and 'end' aware datetimes (studio timezone)
    """
    tz = get_timezone()
    now = now or utc_now()
    prefs = prefs or TimePreferences()
    count = count or settings.suggested_slot_count
    consult = get_consult_config()
    duration = int(consult.get("duration_minutes", settings.consult_duration_minutes))
    skip_weekends = bool(consult.get("skip_weekends", True))
    hour = get_window_hour(prefs.time_window)

    local_now = now.astimezone(tz)
    current = _start_date(local_now, prefs)
    step = timedelta(days=7) if prefs.day else timedelta(days=1)
    last_day = local_now.date() + timedelta(days=MAX_LOOKAHEAD_DAYS)

    slots: list[dict[str, datetime]] = []
    while len(slots) < count and current <= last_day:
        if not prefs.day and skip_weekends and current.weekday() >= 5:
            current += timedelta(days=1)
            continue
        start = tz.localize(datetime.combine(current, time(hour, 0)))
        if start > now:
            slots.append({"start": start, "end": start + timedelta(minutes=duration)})
        current += step

    return slots


async def _busy_starts(contact_id: str | None) -> set[datetime]:
    """Start times of the contact's live appointments (never offered again)."""
    if not contact_id:
        return set()
    try:
        events = await calendar_client.list_appointments_for_contact(contact_id)
    except Exception as e:
        logger.warning(f"Could not list appointments for {contact_id}, skipping conflict check: {e}")
        return set()

    busy = set()
    for event in events:
        status = str(event.get("appointmentStatus") or event.get("status") or "").lower()
        if status == F.APPOINTMENT_STATUS_CANCELLED:
            continue
        start = parse_timestamp(event.get("startTime"))
        if start is not None:
            busy.add(start)
    return busy


async def get_available_slots(
    state: CanonicalState,
    prefs: TimePreferences | None = None,
    *,
    contact_id: str | None = None,
    now: datetime | None = None,
    consult_mode: str = CONSULT_MODE_ONLINE,
) -> list[Slot]:
    """
    Available consult slots across all artists, time-first.

    Args:
        state: Canonical state (translator_needed attaches a translator to each slot)
        prefs: Time preferences extracted from the conversation
        contact_id: When given, slots clashing with the contact's appointments are dropped
        now: Current time (default: now, UTC)
        consult_mode: "online" or "in_person" calendars

    Returns:
        Up to settings.suggested_slot_count slots
    """
    count = min(settings.suggested_slot_count, settings.max_offered_slots)
    # Over-generate so conflicts can be dropped without running short
    base = generate_suggested_slots(now=now, prefs=prefs, count=count * 2)
    busy = await _busy_starts(contact_id)

    candidates = []
    for artist in get_artists():
        name = artist.get("name")
        calendar_id = get_calendar_id_for_artist(name, consult_mode)
        if not calendar_id:
            logger.warning(f"No calendar found for artist {name}, mode {consult_mode}")
            continue
        for base_slot in base:
            candidates.append((base_slot["start"], base_slot["end"], name, calendar_id))

    # Stable sort keeps config order between artists at the same time
    candidates.sort(key=lambda c: c[0])

    translators = [t for t in get_translators() if t.get("calendar_id")] if state.translator_needed else []
    if state.translator_needed and not translators:
        logger.warning("Translator needed but no translator calendars configured")

    slots: list[Slot] = []
    used_times: set[datetime] = set()
    for start, end, artist, calendar_id in candidates:
        if start in used_times or start in busy:
            continue
        used_times.add(start)
        translator = translators[len(slots) % len(translators)] if translators else None
        slots.append(
            Slot(
                start_time=start.isoformat(),
                end_time=end.isoformat(),
                display_text=format_slot_display(start),
                calendar_id=calendar_id,
                artist=artist,
                translator_calendar_id=translator["calendar_id"] if translator else None,
                translator=translator.get("name") if translator else None,
            )
        )
        if len(slots) >= count:
            break

    logger.info(f"Generated {len(slots)} consult slots (translator={bool(translators)})")
    return slots


def _consult_title(slot: Slot, consult_mode: str) -> str:
    mode = "Online" if consult_mode == CONSULT_MODE_ONLINE else "In-Person"
    return f"Consultation - {slot.artist or 'Artist'} ({mode})"


async def create_consult_appointment(
    contact_id: str,
    slot: Slot,
    state: CanonicalState,
    *,
    deposit_paid: bool = False,
    consult_mode: str = CONSULT_MODE_ONLINE,
) -> BookedConsult:
    """
    Book the chosen slot on the artist's calendar.

    Unpaid bookings are created as "new" (a hold); paid ones as "confirmed".
    Slots carrying a translator also get a paired appointment on the
    translator's calendar, linked by a PairingKey in both descriptions.

    Raises:
        ValueError: If the slot has no calendar id
        CrmError: If the artist appointment cannot be created
    """
    if not slot.calendar_id:
        raise ValueError(f"Slot {slot.start_time} has no calendar id")

    status = F.APPOINTMENT_STATUS_CONFIRMED if deposit_paid else F.APPOINTMENT_STATUS_NEW
    description = f"Consultation for {state.tattoo_summary or 'tattoo'}"
    pairing_key = None
    if slot.translator_calendar_id:
        pairing_key = uuid.uuid4().hex[:8].upper()
        description = f"{description}\n{PAIRING_KEY_PREFIX}{pairing_key}"

    address = "Zoom" if consult_mode == CONSULT_MODE_ONLINE else None
    appointment = await calendar_client.create_appointment(
        calendar_id=slot.calendar_id,
        contact_id=contact_id,
        start_time=slot.start_time,
        end_time=slot.end_time,
        title=_consult_title(slot, consult_mode),
        description=description,
        appointment_status=status,
        assigned_user_id=get_user_id_for_artist(slot.artist),
        address=address,
    )
    appointment_id = appointment.get("id") or appointment.get("appointmentId")
    if not appointment_id:
        raise ValueError(f"Calendar returned no appointment id for {contact_id}")

    translator_appointment_id = None
    if slot.translator_calendar_id:
        try:
            translator_appointment = await calendar_client.create_appointment(
                calendar_id=slot.translator_calendar_id,
                contact_id=contact_id,
                start_time=slot.start_time,
                end_time=slot.end_time,
                title=f"Translator - {_consult_title(slot, consult_mode)}",
                description=description,
                appointment_status=status,
                assigned_user_id=get_translator_user_id(slot.translator_calendar_id),
                address=address,
            )
            translator_appointment_id = translator_appointment.get("id")
        except Exception as e:
            # The artist booking stands; sibling sync can still pair them later by start time
            logger.error(
                f"Failed to book translator {slot.translator} for {contact_id} at {slot.start_time}: {e}",
                exc_info=True,
            )

    logger.info(
        f"Booked consult {appointment_id} ({status}) for {contact_id} at {slot.start_time}"
        + (f" with translator appointment {translator_appointment_id}" if translator_appointment_id else "")
    )
    return BookedConsult(
        appointment_id=str(appointment_id),
        status=status,
        translator_appointment_id=translator_appointment_id,
        pairing_key=pairing_key,
    )
