"""
Canonical state builder - projects the CRM's loosely-typed custom-field bag into a
normalized, typed snapshot.

Pure (no IO). This is the only place raw custom fields are read; every other
component works from CanonicalState. The snapshot is rebuilt on every turn, never
cached between turns, so a stale read can't compound.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from studio_assistant.constants import fields as F
from studio_assistant.utils.datetime_utils import parse_timestamp

logger = logging.getLogger(__name__)

TRUTHY_STRINGS = {"yes", "true", "1"}


@dataclass(frozen=True)
class Slot:
    """An offered appointment time. Compared by start_time for selection matching."""

    start_time: str
    end_time: str
    display_text: str
    calendar_id: str | None = None
    artist: str | None = None
    translator_calendar_id: str | None = None
    translator: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire shape persisted in last_sent_slots."""
        data = {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "displayText": self.display_text,
            "calendarId": self.calendar_id,
            "artist": self.artist,
        }
        if self.translator_calendar_id:
            data["translatorCalendarId"] = self.translator_calendar_id
            data["translator"] = self.translator
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> "Slot | None":
        """Build a Slot from its persisted shape; None if start/end are missing."""
        if isinstance(raw, Slot):
            return raw
        if not isinstance(raw, dict):
            return None
        start = raw.get("startTime") or raw.get("start_time") or raw.get("start")
        end = raw.get("endTime") or raw.get("end_time") or raw.get("end")
        if not start or not end:
            return None
        return cls(
            start_time=str(start),
            end_time=str(end),
            display_text=str(raw.get("displayText") or raw.get("display_text") or raw.get("display") or start),
            calendar_id=raw.get("calendarId") or raw.get("calendar_id"),
            artist=raw.get("artist"),
            translator_calendar_id=raw.get("translatorCalendarId") or raw.get("translator_calendar_id"),
            translator=raw.get("translator"),
        )


def slots_to_json(slots: list[Slot]) -> str:
    """Serialize offered slots for the last_sent_slots field."""
    return json.dumps([slot.to_dict() for slot in slots])


@dataclass(frozen=True)
class CanonicalState:
    """Normalized snapshot of a contact's booking-relevant fields."""

    # Tattoo intake
    tattoo_summary: str | None = None
    tattoo_placement: str | None = None
    tattoo_size: str | None = None
    tattoo_style: str | None = None
    timeline: str | None = None
    language: str = "en"

    # Consult path
    consultation_type: str | None = None
    consultation_type_locked: bool = False
    consult_explained: bool = False
    language_barrier_explained: bool = False
    translator_explained: bool = False
    translator_needed: bool = False
    translator_confirmed: bool = False

    # Deposit
    deposit_link_sent: bool = False
    deposit_link_url: str | None = None
    deposit_paid: bool = False

    # Hold
    hold_appointment_id: str | None = None
    hold_created_at: datetime | None = None
    hold_last_activity_at: datetime | None = None
    hold_last_activity_raw: str | None = None
    hold_warning_sent: bool = False
    hold_slot: dict | None = None
    last_released_slot: dict | None = None

    # Appointments / slots
    consult_appointment_id: str | None = None
    appointment_booked: bool = False
    upcoming_appointment_id: str | None = None
    times_sent: bool = False
    last_sent_slots: tuple[Slot, ...] = ()

    # Pipeline
    opportunity_stage: str | None = None
    opportunity_id: str | None = None
    tattoo_booked: bool = False
    tattoo_completed: bool = False
    cold_nurture_lost: bool = False

    last_seen_snapshot: dict = field(default_factory=dict)

    @property
    def has_core_info(self) -> bool:
        return bool(self.tattoo_summary and self.tattoo_placement)

    @property
    def has_active_hold(self) -> bool:
        return bool(self.hold_appointment_id) and not self.deposit_paid

    @property
    def has_offered_slots(self) -> bool:
        return bool(self.last_sent_slots)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view (admin/debug endpoint, responder context)."""
        data = asdict(self)
        data["last_sent_slots"] = [slot.to_dict() for slot in self.last_sent_slots]
        for key in ("hold_created_at", "hold_last_activity_at"):
            value = data.get(key)
            data[key] = value.isoformat() if value else None
        data["has_core_info"] = self.has_core_info
        return data


def bool_val(raw: Any) -> bool:
    """Truthy for True, "yes", "true", "1" (any case); everything else is False."""
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return False
    return str(raw).strip().lower() in TRUTHY_STRINGS


def parse_json_field(raw: Any, fallback: Any) -> Any:
    """
    Parse a JSON-serialized custom field. Never raises.

    Already-decoded lists/dicts pass through; missing, invalid, or wrong-typed JSON
    yields the fallback.
    """
    if raw is None or raw == "":
        return fallback
    if isinstance(raw, (list, dict)):
        parsed = raw
    else:
        try:
            parsed = json.loads(str(raw))
        except (ValueError, TypeError):
            logger.debug(f"Ignoring invalid JSON custom field value: {str(raw)[:80]}")
            return fallback
    if fallback is not None and not isinstance(parsed, type(fallback)):
        return fallback
    return parsed


def normalize_display_name(display_name: Any) -> str | None:
    """"Tattoo Placement" -> "tattoo_placement"."""
    if not display_name or not isinstance(display_name, str):
        return None
    cleaned = re.sub(r"[?!.,]", "", display_name.lower())
    return re.sub(r"\s+", "_", cleaned.strip()) or None


def _entry_key(entry: dict) -> str | None:
    return entry.get("key") or entry.get("fieldKey") or entry.get("customFieldKey")


def normalize_custom_fields(raw: Any) -> dict[str, Any]:
    """
    Normalize the custom-field bag from any of the shapes the CRM returns.

    Handles:
    - Plain mapping: {"tattoo_placement": "forearm"}
    - List of entries: [{"key": "tattoo_placement", "value": "forearm"}]
    - Array-like mapping: {"0": {"key": "tattoo_placement", "value": "forearm"}}
    - Display-name keys: {"Tattoo Placement": "forearm"}
    """
    if not raw:
        return {}

    normalized: dict[str, Any] = {}

    if isinstance(raw, list):
        for entry in raw:
            if isinstance(entry, dict) and _entry_key(entry) and "value" in entry:
                normalized[_entry_key(entry)] = entry["value"]
        return normalized

    if not isinstance(raw, dict):
        return {}

    keys = list(raw.keys())
    if keys and all(str(k).isdigit() for k in keys):
        for entry in raw.values():
            if isinstance(entry, dict) and _entry_key(entry) and "value" in entry:
                normalized[_entry_key(entry)] = entry["value"]
        return normalized

    for key, value in raw.items():
        if value is None or value == "":
            continue
        # Nested objects (location, contact) are not custom fields
        if isinstance(value, dict):
            continue
        if " " in key or key[:1].isupper():
            snake_key = normalize_display_name(key)
            if snake_key:
                normalized[snake_key] = value
        else:
            normalized[key] = value

    return normalized


def get_custom_fields(contact: dict | None) -> dict[str, Any]:
    """Normalized custom fields of a contact (customField or customFields)."""
    if not contact:
        return {}
    raw = contact.get("customField") or contact.get("customFields") or {}
    return normalize_custom_fields(raw)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _slot_list(raw: Any) -> tuple[Slot, ...]:
    entries = parse_json_field(raw, [])
    slots = []
    for entry in entries:
        slot = Slot.from_dict(entry)
        if slot is not None:
            slots.append(slot)
    return tuple(slots)


def _json_dict(raw: Any) -> dict | None:
    parsed = parse_json_field(raw, {})
    return parsed or None


def build_canonical_state(contact: dict | None) -> CanonicalState:
    """
    Build the canonical state for a contact record.

    Args:
        contact: CRM contact dict (custom fields under customField/customFields)

    Returns:
        CanonicalState snapshot; an empty state for a missing contact
    """
    cf = get_custom_fields(contact)

    consult_appointment_id = _text(cf.get(F.FIELD_CONSULT_APPOINTMENT_ID) or cf.get(F.FIELD_APPOINTMENT_ID))
    hold_appointment_id = _text(cf.get(F.FIELD_HOLD_APPOINTMENT_ID))
    hold_last_activity_raw = _text(cf.get(F.FIELD_HOLD_LAST_ACTIVITY_AT))
    language = (_text(cf.get(F.FIELD_LANGUAGE)) or "en").lower()

    return CanonicalState(
        tattoo_summary=_text(cf.get(F.FIELD_TATTOO_SUMMARY)),
        tattoo_placement=_text(cf.get(F.FIELD_TATTOO_PLACEMENT)),
        tattoo_size=_text(cf.get(F.FIELD_TATTOO_SIZE)),
        tattoo_style=_text(cf.get(F.FIELD_TATTOO_STYLE)),
        timeline=_text(cf.get(F.FIELD_TIMELINE)),
        language="es" if language.startswith("es") or language.startswith("span") else "en",
        consultation_type=_text(cf.get(F.FIELD_CONSULTATION_TYPE)),
        consultation_type_locked=bool_val(cf.get(F.FIELD_CONSULTATION_TYPE_LOCKED)),
        consult_explained=bool_val(cf.get(F.FIELD_CONSULT_EXPLAINED)),
        language_barrier_explained=bool_val(cf.get(F.FIELD_LANGUAGE_BARRIER_EXPLAINED)),
        translator_explained=bool_val(
            cf.get(F.FIELD_TRANSLATOR_EXPLAINED) or cf.get(F.FIELD_LANGUAGE_BARRIER_EXPLAINED)
        ),
        translator_needed=bool_val(cf.get(F.FIELD_TRANSLATOR_NEEDED)),
        translator_confirmed=bool_val(cf.get(F.FIELD_TRANSLATOR_CONFIRMED)),
        deposit_link_sent=bool_val(cf.get(F.FIELD_DEPOSIT_LINK_SENT)),
        deposit_link_url=_text(cf.get(F.FIELD_DEPOSIT_LINK_URL)),
        deposit_paid=bool_val(cf.get(F.FIELD_DEPOSIT_PAID)),
        hold_appointment_id=hold_appointment_id,
        hold_created_at=parse_timestamp(cf.get(F.FIELD_HOLD_CREATED_AT)),
        hold_last_activity_at=parse_timestamp(hold_last_activity_raw),
        hold_last_activity_raw=hold_last_activity_raw,
        hold_warning_sent=bool_val(cf.get(F.FIELD_HOLD_WARNING_SENT)),
        hold_slot=_json_dict(cf.get(F.FIELD_HOLD_SLOT)),
        last_released_slot=_json_dict(cf.get(F.FIELD_LAST_RELEASED_SLOT)),
        consult_appointment_id=consult_appointment_id,
        appointment_booked=bool_val(cf.get(F.FIELD_APPOINTMENT_BOOKED)) or bool(consult_appointment_id),
        upcoming_appointment_id=consult_appointment_id or hold_appointment_id,
        times_sent=bool_val(cf.get(F.FIELD_TIMES_SENT)),
        last_sent_slots=_slot_list(cf.get(F.FIELD_LAST_SENT_SLOTS)),
        opportunity_stage=_text(cf.get(F.FIELD_OPPORTUNITY_STAGE)),
        opportunity_id=_text(cf.get(F.FIELD_OPPORTUNITY_ID)),
        tattoo_booked=bool_val(cf.get(F.FIELD_TATTOO_BOOKED)),
        tattoo_completed=bool_val(cf.get(F.FIELD_TATTOO_COMPLETED)),
        cold_nurture_lost=bool_val(cf.get(F.FIELD_COLD_NURTURE_LOST)),
        last_seen_snapshot=parse_json_field(cf.get(F.FIELD_LAST_SEEN_SNAPSHOT), {}),
    )


def get_contact_id(contact: dict | None) -> str | None:
    """Contact id from either "id" or "_id"."""
    if not contact:
        return None
    contact_id = contact.get("id") or contact.get("_id")
    return str(contact_id) if contact_id else None


def merge_custom_fields(contact: dict | None, updates: dict[str, Any]) -> dict:
    """
    Return a copy of contact with updates applied to its custom fields (in memory only).

    Used to recompute state after a turn without re-reading the CRM, which has no
    read-after-write guarantee.
    """
    merged = dict(contact or {})
    cf = get_custom_fields(contact)
    for key, value in (updates or {}).items():
        cf[key] = value
    merged["customField"] = cf
    merged.pop("customFields", None)
    return merged
