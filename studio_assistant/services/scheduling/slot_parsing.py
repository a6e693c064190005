"""
Slot selection parsing - matches a lead's reply against the slots we last offered.

Requires explicit intent to avoid false positives (e.g. "I have 3 questions" -> slot 3).
Parsed numbers are validated against min(slot_count, max_slots).

Tier 1 (explicit intent):
- Bare number: message is just "1"-"9"
- Option format: "option 3", "number 2", "#3", "3)", "3."
- Ordinals: "the second one", "2nd", "last one"

Tier 2 (descriptive, only when a slot matches):
- Day + daypart: "Tuesday afternoon", "wed"
- Month + day: "Jan 6", "January 6th"
- Clock time: "5pm", "2:30pm", "17:00"; "at 5" (no am/pm) is ambiguous
"""

import logging
import re
from datetime import datetime
from typing import Any

from studio_assistant.services.scheduling.studio_config import get_timezone
from studio_assistant.services.state.canonical_state import Slot
from studio_assistant.utils.datetime_utils import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_MAX_SLOTS = 4

DAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
    "mon": 0,
    "tue": 1,
    "tues": 1,
    "wed": 2,
    "thu": 3,
    "thur": 3,
    "thurs": 3,
    "fri": 4,
    "sat": 5,
    "sun": 6,
}

MONTHS = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "sept": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

ORDINALS = {
    "first": 1,
    "1st": 1,
    "second": 2,
    "2nd": 2,
    "third": 3,
    "3rd": 3,
    "fourth": 4,
    "4th": 4,
}

DAYPARTS = {
    "morning": (6, 12),
    "afternoon": (12, 17),
    "evening": (17, 21),
    "night": (17, 24),
}

_MONTH_DAY = re.compile(
    r"\b(" + "|".join(sorted(MONTHS, key=len, reverse=True)) + r")\.?\s*(\d{1,2})(?:st|nd|rd|th)?\b"
)
_CLOCK_12H = re.compile(r"\b(\d{1,2})(?:\s*:\s*(\d{2}))?\s*(am|pm)\b")
_CLOCK_24H = re.compile(r"\b(0?\d|1\d|2[0-3])\s*[.:]\s*(\d{2})\b")


def _local_start(slot: Slot) -> datetime | None:
    start = parse_timestamp(slot.start_time)
    if start is None:
        return None
    return start.astimezone(get_timezone())


def _strip_date_time_numbers(message_lower: str) -> str:
    """Remove month+day and clock expressions so their digits don't read as slot numbers."""
    cleaned = _MONTH_DAY.sub(" ", message_lower)
    cleaned = _CLOCK_12H.sub(" ", cleaned)
    return _CLOCK_24H.sub(" ", cleaned)


def _has_multiple_slot_numbers(message_lower: str, max_slots: int) -> bool:
    """True if message contains 2+ distinct slot numbers (1..max_slots). Used to reject '1 or 2'."""
    numbers = re.findall(r"\b([1-9])\b", _strip_date_time_numbers(message_lower))
    distinct = {int(n) for n in numbers if 1 <= int(n) <= max_slots}
    return len(distinct) > 1


def _tier1_explicit_intent(message_lower: str, effective_max: int) -> tuple[int, str] | None:
    """
    Tier 1: Only accept when intent is explicit.
    Returns (n, match_type) or None. match_type: "number"|"option"|"hash"|"list"|"ordinal"
    """
    stripped = message_lower.strip().rstrip("!.")

    if re.match(r"^([1-9])$", stripped):
        n = int(stripped)
        if 1 <= n <= effective_max:
            return (n, "number")

    option_match = re.search(r"\b(option|slot|choice|number)\s*#?\s*([1-9])\b", message_lower)
    if option_match:
        n = int(option_match.group(2))
        if 1 <= n <= effective_max:
            return (n, "option")

    hash_match = re.search(r"#([1-9])\b", message_lower)
    if hash_match:
        n = int(hash_match.group(1))
        if 1 <= n <= effective_max:
            return (n, "hash")

    lead_match = re.match(r"^([1-9])[\).:]", stripped)
    if lead_match:
        n = int(lead_match.group(1))
        if 1 <= n <= effective_max:
            return (n, "list")

    for word, n in ORDINALS.items():
        if re.search(rf"\b{word}\b", message_lower) and n <= effective_max:
            return (n, "ordinal")
    if re.search(r"\b(last one|the last)\b", message_lower):
        return (effective_max, "ordinal")

    return None


def explicit_slot_number(message_text: str | None, max_slots: int) -> int | None:
    """Slot number named outright ("slot 2", "#3", "the second", "the last"), else None."""
    if not message_text:
        return None
    tier1 = _tier1_explicit_intent(str(message_text).lower(), max_slots)
    return tier1[0] if tier1 else None


def _parse_day_time(message_lower: str, local_starts: list[datetime | None]) -> int | None:
    """Parse day + optional daypart (e.g., 'Tuesday afternoon', 'friday')."""
    day_num = None
    for day_name, day_value in DAYS.items():
        if re.search(rf"\b{day_name}\b", message_lower):
            day_num = day_value
            break
    if day_num is None:
        return None

    time_range = None
    for keyword, hours in DAYPARTS.items():
        if keyword in message_lower:
            time_range = hours
            break

    for i, start in enumerate(local_starts, 1):
        if start is None or start.weekday() != day_num:
            continue
        if time_range and not (time_range[0] <= start.hour < time_range[1]):
            continue
        if not time_range:
            clock = _parse_clock(message_lower)
            if clock and clock != (start.hour, start.minute):
                continue
        logger.debug(f"Matched slot {i} by day: {day_num} {time_range}")
        return i
    return None


def _parse_month_day(message_lower: str, local_starts: list[datetime | None]) -> int | None:
    """Parse month + day mentions ('Dec 3', 'December 3rd')."""
    for match in _MONTH_DAY.finditer(message_lower):
        month = MONTHS[match.group(1)]
        day = int(match.group(2))
        for i, start in enumerate(local_starts, 1):
            if start is not None and start.month == month and start.day == day:
                logger.debug(f"Matched slot {i} by date: {month}/{day}")
                return i
    return None


def _parse_clock(message_lower: str) -> tuple[int, int] | None:
    """Extract an unambiguous clock time as (hour, minute) in 24h, or None."""
    match = _CLOCK_12H.search(message_lower)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        period = match.group(3)
        if not (1 <= hour <= 12):
            return None
        if period == "pm" and hour != 12:
            hour += 12
        elif period == "am" and hour == 12:
            hour = 0
    else:
        match = _CLOCK_24H.search(message_lower)
        if not match:
            return None
        hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return (hour, minute)


def _parse_time_based(message_lower: str, local_starts: list[datetime | None]) -> int | None:
    """Parse time-based selection (e.g., 'the 5pm one', '2:30pm', '17:00')."""
    clock = _parse_clock(message_lower)
    if clock is None:
        return None
    hour, minute = clock

    best_match = None
    min_diff = 31
    for i, start in enumerate(local_starts, 1):
        if start is None:
            continue
        diff = abs((hour * 60 + minute) - (start.hour * 60 + start.minute))
        if diff < min_diff:
            min_diff = diff
            best_match = i

    if best_match:
        logger.debug(f"Matched slot {best_match} by time: {hour}:{minute:02d}")
    return best_match


def parse_slot_selection(
    message: str | None,
    slots: list[Slot],
    max_slots: int = DEFAULT_MAX_SLOTS,
) -> tuple[int | None, dict]:
    """
    Parse slot selection from user message (pure, no side effects).

    Args:
        message: User's reply message
        slots: Offered slots, in the order they were listed
        max_slots: Maximum number of slots ever listed

    Returns:
        Tuple of (number, metadata) where number is 1-based:
        - Success: (int, {"matched_by": "number"|"option"|"hash"|"list"|"ordinal"|"daypart"|"date"|"time"})
        - Reject: (None, {"reason": "no_message_or_slots"|"multiple_numbers"|"no_intent"|"no_time_match"|"out_of_range"})
    """
    if not message or not slots:
        return (None, {"reason": "no_message_or_slots"})

    message_lower = str(message).lower()
    effective_max = min(len(slots), max_slots)
    local_starts = [_local_start(slot) for slot in slots[:effective_max]]

    if _has_multiple_slot_numbers(message_lower, max_slots):
        logger.debug("Slot selection ambiguous (multiple numbers), returning None")
        return (None, {"reason": "multiple_numbers"})

    tier1 = _tier1_explicit_intent(message_lower, effective_max)
    if tier1 is not None:
        n, match_type = tier1
        return (n, {"matched_by": match_type})

    day_time_match = _parse_day_time(message_lower, local_starts)
    if day_time_match:
        return (day_time_match, {"matched_by": "daypart"})

    date_match = _parse_month_day(message_lower, local_starts)
    if date_match:
        return (date_match, {"matched_by": "date"})

    time_match = _parse_time_based(message_lower, local_starts)
    if time_match:
        return (time_match, {"matched_by": "time"})

    stripped = message_lower.strip()
    if re.match(r"^([1-9])$", stripped) and int(stripped) > effective_max:
        reject_reason = "out_of_range"
    elif _CLOCK_12H.search(message_lower) or _CLOCK_24H.search(message_lower):
        reject_reason = "no_time_match"
    else:
        reject_reason = "no_intent"

    logger.debug(f"Could not parse slot selection from: {message}")
    return (None, {"reason": reject_reason})


def resolve_selected_slot(selection: Any, slots: list[Slot]) -> Slot | None:
    """
    Resolve a selection to one of the offered slots.

    Accepts a 0-based index, a Slot, or a slot dict (matched by start time).
    """
    if selection is None or not slots:
        return None
    if isinstance(selection, bool):
        return None
    if isinstance(selection, int):
        return slots[selection] if 0 <= selection < len(slots) else None
    candidate = Slot.from_dict(selection)
    if candidate is None:
        return None
    for slot in slots:
        if slot.start_time == candidate.start_time:
            return slot
    # Same instant written with a different offset
    candidate_start = parse_timestamp(candidate.start_time)
    for slot in slots:
        if candidate_start is not None and parse_timestamp(slot.start_time) == candidate_start:
            return slot
    return None


def select_slot(
    message: str | None, slots: list[Slot], max_slots: int = DEFAULT_MAX_SLOTS
) -> tuple[Slot | None, dict]:
    """Parse the message and return the chosen slot itself (or None) with parse metadata."""
    number, metadata = parse_slot_selection(message, slots, max_slots)
    if number is None:
        return (None, metadata)
    return (resolve_selected_slot(number - 1, slots), metadata)


def format_slot_display(dt: datetime) -> str:
    """Format a slot start for humans: 'Monday, Jan 5 at 5pm' (studio timezone)."""
    local = dt.astimezone(get_timezone()) if dt.tzinfo else get_timezone().localize(dt)
    hour12 = local.hour % 12 or 12
    ampm = "pm" if local.hour >= 12 else "am"
    minute = f":{local.minute:02d}" if local.minute else ""
    return f"{local.strftime('%A')}, {local.strftime('%b')} {local.day} at {hour12}{minute}{ampm}"


def format_slot_list(slots: list[Slot], max_slots: int = DEFAULT_MAX_SLOTS) -> str:
    """Numbered list, one slot per line: '1) Monday, Jan 5 at 5pm'."""
    return "\n".join(f"{i}) {slot.display_text}" for i, slot in enumerate(slots[:max_slots], 1))
