"""
Tests for slot selection parsing.

Tests various reply formats: numbers, "option X", ordinals, day+daypart, dates and clock times.
"""

from datetime import UTC, datetime

import pytest

from studio_assistant.services.scheduling.slot_parsing import (
    explicit_slot_number,
    format_slot_display,
    format_slot_list,
    parse_slot_selection,
    resolve_selected_slot,
    select_slot,
)
from studio_assistant.services.state.canonical_state import Slot


@pytest.fixture
def sample_slots():
    """Monday 5pm, Tuesday 5pm, Wednesday 10am (studio time, UTC-7)."""
    return [
        Slot("2026-03-02T17:00:00-07:00", "2026-03-02T17:30:00-07:00", "Monday, Mar 2 at 5pm", "cal_joan", "Joan"),
        Slot("2026-03-03T17:00:00-07:00", "2026-03-03T17:30:00-07:00", "Tuesday, Mar 3 at 5pm", "cal_joan", "Joan"),
        Slot("2026-03-04T10:00:00-07:00", "2026-03-04T10:30:00-07:00", "Wednesday, Mar 4 at 10am", "cal_andrew", "Andrew"),
    ]


def test_parse_slot_selection_pure_returns_metadata(sample_slots):
    """Pure parse_slot_selection returns (number, metadata) without side effects."""
    number, meta = parse_slot_selection("3", sample_slots)
    assert number == 3
    assert meta == {"matched_by": "number"}

    number, meta = parse_slot_selection("I have 3 questions", sample_slots)
    assert number is None
    assert meta == {"reason": "no_intent"}


@pytest.mark.parametrize(
    "message,expected,matched_by",
    [
        ("option 2", 2, "option"),
        ("Option #1 please", 1, "option"),
        ("#3", 3, "hash"),
        ("2) works", 2, "list"),
        ("the second one", 2, "ordinal"),
        ("3rd", 3, "ordinal"),
        ("the last one", 3, "ordinal"),
        ("Tuesday evening", 2, "daypart"),
        ("wed", 3, "daypart"),
        ("March 4th", 3, "date"),
        ("the 10am one", 3, "time"),
    ],
)
def test_parse_slot_selection_formats(sample_slots, message, expected, matched_by):
    number, meta = parse_slot_selection(message, sample_slots)
    assert number == expected
    assert meta["matched_by"] == matched_by


def test_multiple_numbers_are_ambiguous(sample_slots):
    number, meta = parse_slot_selection("1 or 2", sample_slots)
    assert number is None
    assert meta == {"reason": "multiple_numbers"}


def test_date_digits_do_not_count_as_slot_numbers(sample_slots):
    number, _ = parse_slot_selection("Mar 3 at 5pm", sample_slots)
    assert number == 2


def test_out_of_range_number(sample_slots):
    number, meta = parse_slot_selection("4", sample_slots)
    assert number is None
    assert meta == {"reason": "out_of_range"}


def test_unmatched_clock_time(sample_slots):
    number, meta = parse_slot_selection("8pm", sample_slots)
    assert number is None
    assert meta == {"reason": "no_time_match"}


def test_no_slots_or_message(sample_slots):
    assert parse_slot_selection("", sample_slots) == (None, {"reason": "no_message_or_slots"})
    assert parse_slot_selection("1", []) == (None, {"reason": "no_message_or_slots"})


def test_select_slot_returns_the_slot(sample_slots):
    slot, meta = select_slot("option 2", sample_slots)
    assert slot == sample_slots[1]
    assert meta == {"matched_by": "option"}


def test_resolve_selected_slot(sample_slots):
    assert resolve_selected_slot(0, sample_slots) == sample_slots[0]
    assert resolve_selected_slot(5, sample_slots) is None
    assert resolve_selected_slot(True, sample_slots) is None
    # Same instant, written in UTC
    assert resolve_selected_slot(
        {"startTime": "2026-03-03T00:00:00Z", "endTime": "2026-03-03T00:30:00Z"}, sample_slots
    ) == sample_slots[0]
    assert resolve_selected_slot({"startTime": "2026-04-01T10:00:00Z", "endTime": "x"}, sample_slots) is None


def test_format_slot_display_uses_studio_timezone():
    assert format_slot_display(datetime(2026, 3, 3, 0, 0, tzinfo=UTC)) == "Monday, Mar 2 at 5pm"
    assert format_slot_display(datetime(2026, 3, 4, 17, 30, tzinfo=UTC)) == "Wednesday, Mar 4 at 10:30am"


def test_format_slot_list(sample_slots):
    assert format_slot_list(sample_slots).splitlines() == [
        "1) Monday, Mar 2 at 5pm",
        "2) Tuesday, Mar 3 at 5pm",
        "3) Wednesday, Mar 4 at 10am",
    ]
    assert format_slot_list(sample_slots, max_slots=2).count("\n") == 1


@pytest.mark.parametrize(
    "message,expected",
    [
        ("I'll take slot 2", 2),
        ("number 3", 3),
        ("#1 please", 1),
        ("2nd", 2),
        ("the last", 3),
        ("Tuesday at 5pm", None),
        ("option 9", None),
        (None, None),
    ],
)
def test_explicit_slot_number(message, expected):
    assert explicit_slot_number(message, 3) == expected
