"""
Tests for the deterministic handlers behind hard-skipped turns.

Handlers perform their calendar/payment side effects and return field updates;
persisting those is the controller's job, so these tests assert on the response.
"""

import copy
import json
from datetime import UTC, datetime

import pytest

from studio_assistant.constants import response_tags as T
from studio_assistant.services.integrations import stripe_service
from studio_assistant.services.intents.intent_classifier import Intents
from studio_assistant.services.routing import booking_actions
from studio_assistant.services.routing.deterministic_responses import (
    build_deterministic_response,
    consult_answer_key,
)
from studio_assistant.services.scheduling import availability
from studio_assistant.services.state.canonical_state import Slot, build_canonical_state, slots_to_json
from studio_assistant.services.state.phase import derive_phase

MONDAY_MORNING = datetime(2026, 3, 2, 15, 0, tzinfo=UTC)
JOAN_ONLINE = "GOQ12ndYAdq3BvzOdu2A"
LIONEL = "XyM4ZgMs7hpPJbDr0gLS"

OFFERED = [
    Slot("2026-03-02T17:00:00-07:00", "2026-03-02T17:30:00-07:00", "Monday, Mar 2 at 5pm", JOAN_ONLINE, "Joan"),
    Slot("2026-03-03T17:00:00-07:00", "2026-03-03T17:30:00-07:00", "Tuesday, Mar 3 at 5pm", JOAN_ONLINE, "Joan"),
    Slot("2026-03-04T17:00:00-07:00", "2026-03-04T17:30:00-07:00", "Wednesday, Mar 4 at 5pm", JOAN_ONLINE, "Joan"),
]

SCHEDULING_FIELDS = {
    "tattoo_summary": "rose",
    "tattoo_placement": "forearm",
    "consultation_type": "appointment",
    "times_sent": True,
    "last_sent_slots": slots_to_json(OFFERED),
}


async def _respond(backend, reason, message, fields=None, intents=None, contact_id="c1", context=None):
    contact = backend.crm.seed_contact(contact_id, fields) if contact_id else {}
    state = build_canonical_state(contact)
    return await build_deterministic_response(
        reason,
        intents or Intents(),
        derive_phase(state),
        state,
        copy.deepcopy(contact),
        message,
        context={"now": MONDAY_MORNING, **(context or {})},
    )


# ---- Scheduling ----


@pytest.mark.asyncio
async def test_scheduling_offers_numbered_slots(backend):
    response = await _respond(backend, T.REASON_SCHEDULING_INTENT, "what times this week?")

    assert response.internal_notes == T.TAG_SCHEDULING_SLOTS
    assert len(response.slots) == 3
    assert response.bubbles[0].endswith("Which works best?")
    assert "1) Monday, Mar 2 at 5pm" in response.bubbles[0]
    assert response.field_updates["times_sent"] is True
    assert response.field_updates["consult_explained"] is True
    stored = json.loads(response.field_updates["last_sent_slots"])
    assert [s["startTime"] for s in stored] == [s.start_time for s in response.slots]
    assert response.meta["reason"] == T.REASON_SCHEDULING_INTENT


@pytest.mark.asyncio
async def test_scheduling_without_availability_asks_for_preferences(backend, monkeypatch):
    async def no_slots(*args, **kwargs):
        return []

    monkeypatch.setattr(availability, "get_available_slots", no_slots)
    response = await _respond(backend, T.REASON_SCHEDULING_INTENT, "any openings?")

    assert response.internal_notes == T.TAG_SCHEDULING_FALLBACK
    assert "morning / afternoon / evening" in response.bubbles[0]
    assert response.field_updates == {"consult_explained": True}
    assert response.slots == []


@pytest.mark.asyncio
async def test_scheduling_availability_error_is_a_fallback(backend, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("calendar down")

    monkeypatch.setattr(availability, "get_available_slots", broken)
    response = await _respond(backend, T.REASON_SCHEDULING_INTENT, "any openings?")
    assert response.internal_notes == T.TAG_SCHEDULING_FALLBACK


@pytest.mark.asyncio
async def test_released_slot_is_offered_first_when_still_open(backend):
    released = OFFERED[1].to_dict()
    response = await _respond(
        backend, T.REASON_SCHEDULING_INTENT, "what times?", {"last_released_slot": json.dumps(released)}
    )

    assert response.internal_notes == T.TAG_SCHEDULING_RELEASED_SLOT_OPEN
    assert response.bubbles[0].startswith("Good news: Tuesday, Mar 3 at 5pm is still open.")
    assert response.slots[0].start_time == OFFERED[1].start_time


@pytest.mark.asyncio
async def test_translator_affirmation_offers_translated_slots(backend):
    response = await _respond(
        backend,
        T.REASON_TRANSLATOR_AFFIRM_INTENT,
        "yes",
        {"translator_needed": True},
        Intents(translator_affirm_intent=True),
    )

    assert response.internal_notes == T.TAG_TRANSLATOR_CONFIRMED_SLOTS
    assert response.field_updates["translator_confirmed"] is True
    assert response.field_updates["consultation_type"] == "appointment"
    assert response.field_updates["consultation_type_locked"] is True
    assert all(slot.translator for slot in response.slots)


# ---- Slot selection ----


@pytest.mark.asyncio
async def test_slot_selection_places_hold_and_sends_deposit_link(backend):
    response = await _respond(backend, T.REASON_SLOT_SELECTION, "option 2", SCHEDULING_FIELDS)

    assert response.internal_notes == T.TAG_SLOT_HOLD_AND_DEPOSIT
    assert response.meta["slot_source"] == booking_actions.SLOT_SOURCE_STATE
    body = response.bubbles[0]
    assert body.startswith("Got you for Tuesday, Mar 3 at 5pm.")
    assert "$100 refundable deposit" in body
    assert "https://checkout.stripe.com/test/cs_test_c1_10000" in body
    assert "~20 minutes" in body

    updates = response.field_updates
    hold_id = updates["hold_appointment_id"]
    assert backend.calendar.appointments[hold_id]["appointmentStatus"] == "new"
    assert backend.calendar.appointments[hold_id]["startTime"] == OFFERED[1].start_time
    assert updates["hold_created_at"] == MONDAY_MORNING.isoformat()
    assert updates["hold_last_activity_at"] == MONDAY_MORNING.isoformat()
    assert updates["hold_warning_sent"] is False
    assert updates["deposit_link_sent"] is True
    assert json.loads(updates["hold_slot"])["displayText"] == "Tuesday, Mar 3 at 5pm"
    # Slots came from state: the list on record is not rewritten
    assert "last_sent_slots" not in updates

    # Pipeline moved to DEPOSIT_PENDING
    assert backend.crm.fields("c1")["opportunity_stage"] == "DEPOSIT_PENDING"


@pytest.mark.asyncio
async def test_new_hold_cancels_the_previous_one(backend):
    backend.calendar.add("old_hold", contactId="c1")
    fields = {**SCHEDULING_FIELDS, "hold_appointment_id": "old_hold"}
    response = await _respond(backend, T.REASON_SLOT_SELECTION, "the first one", fields)

    assert response.internal_notes == T.TAG_SLOT_HOLD_AND_DEPOSIT
    assert ("old_hold", "cancelled", None) in backend.calendar.status_updates
    assert response.field_updates["hold_appointment_id"] != "old_hold"


@pytest.mark.asyncio
async def test_unmatched_selection_relists_same_slots(backend):
    response = await _respond(backend, T.REASON_SLOT_SELECTION, "option 4", SCHEDULING_FIELDS)

    assert response.internal_notes == T.TAG_SLOT_CLARIFY
    assert "3) Wednesday, Mar 4 at 5pm" in response.bubbles[0]
    assert response.field_updates == {}
    assert backend.calendar.appointments == {}


@pytest.mark.asyncio
async def test_selection_with_deposit_already_paid_books_confirmed(backend):
    fields = {**SCHEDULING_FIELDS, "deposit_paid": True}
    response = await _respond(backend, T.REASON_SLOT_SELECTION, "option 1", fields)

    assert response.internal_notes == T.TAG_SLOT_ALREADY_PAID
    appointment_id = response.field_updates["consult_appointment_id"]
    assert backend.calendar.appointments[appointment_id]["appointmentStatus"] == "confirmed"
    assert response.field_updates["appointment_booked"] is True
    assert "hold_appointment_id" not in response.field_updates


@pytest.mark.asyncio
async def test_booking_failure_relists_and_persists_nothing(backend):
    backend.calendar.fail_create_on.add(JOAN_ONLINE)
    response = await _respond(backend, T.REASON_SLOT_SELECTION, "option 1", SCHEDULING_FIELDS)

    assert response.internal_notes == T.TAG_SLOT_BOOKING_FAILED
    assert "1) Monday, Mar 2 at 5pm" in response.bubbles[0]
    assert "hold_appointment_id" not in response.field_updates
    assert "opportunity_stage" not in backend.crm.fields("c1")


@pytest.mark.asyncio
async def test_deposit_link_failure_cancels_the_new_hold(backend, monkeypatch):
    def broken(*args, **kwargs):
        raise ValueError("stripe down")

    monkeypatch.setattr(stripe_service, "create_deposit_link_for_contact", broken)
    translated = [
        Slot(
            "2026-03-03T17:00:00-07:00",
            "2026-03-03T17:30:00-07:00",
            "Tuesday, Mar 3 at 5pm",
            JOAN_ONLINE,
            "Joan",
            LIONEL,
            "Lionel",
        )
    ]
    fields = {**SCHEDULING_FIELDS, "last_sent_slots": slots_to_json(translated)}

    response = await _respond(backend, T.REASON_SLOT_SELECTION, "option 1", fields)

    assert response.internal_notes == T.TAG_SLOT_BOOKING_FAILED
    assert "hold_appointment_id" not in response.field_updates
    # Nothing unconfirmed is left behind on either calendar
    statuses = {a["calendarId"]: a["appointmentStatus"] for a in backend.calendar.appointments.values()}
    assert statuses == {JOAN_ONLINE: "cancelled", LIONEL: "cancelled"}
    assert (next(a["id"] for a in backend.calendar.created_on(LIONEL)), "cancelled", LIONEL) in (
        backend.calendar.status_updates
    )


@pytest.mark.asyncio
async def test_failed_new_hold_keeps_the_previous_one(backend):
    backend.calendar.add("old_hold", contactId="c1", appointmentStatus="new")
    backend.calendar.fail_create_on.add(JOAN_ONLINE)
    fields = {**SCHEDULING_FIELDS, "hold_appointment_id": "old_hold"}

    response = await _respond(backend, T.REASON_SLOT_SELECTION, "option 2", fields)

    assert response.internal_notes == T.TAG_SLOT_BOOKING_FAILED
    assert backend.calendar.appointments["old_hold"]["appointmentStatus"] == "new"
    assert backend.calendar.status_updates == []


@pytest.mark.asyncio
async def test_slot_list_recovered_from_fresh_contact_read(backend):
    """The inbound payload may carry a truncated field; a fresh read still has the list."""
    backend.crm.seed_contact("c1", SCHEDULING_FIELDS)
    contact = copy.deepcopy(backend.crm.contacts["c1"])
    contact["customField"].pop("last_sent_slots")
    state = build_canonical_state(contact)

    response = await build_deterministic_response(
        T.REASON_SLOT_SELECTION,
        Intents(slot_selection_intent=True),
        derive_phase(state),
        state,
        contact,
        "option 3",
        context={"now": MONDAY_MORNING},
    )

    assert response.internal_notes == T.TAG_SLOT_HOLD_AND_DEPOSIT
    assert response.meta["slot_source"] == booking_actions.SLOT_SOURCE_REFETCH
    assert "last_sent_slots" in response.field_updates


@pytest.mark.asyncio
async def test_slot_list_regenerated_when_nothing_on_record(backend):
    response = await _respond(backend, T.REASON_SLOT_SELECTION, "option 1", {"tattoo_summary": "rose"})

    assert response.internal_notes == T.TAG_SLOT_HOLD_AND_DEPOSIT
    assert response.meta["slot_source"] == booking_actions.SLOT_SOURCE_REGENERATED
    assert json.loads(response.field_updates["last_sent_slots"])


@pytest.mark.asyncio
async def test_slot_list_from_turn_context_wins(backend):
    context_slots = [OFFERED[2].to_dict()]
    response = await _respond(
        backend, T.REASON_SLOT_SELECTION, "1", SCHEDULING_FIELDS, context={"slots": context_slots}
    )
    assert response.meta["slot_source"] == booking_actions.SLOT_SOURCE_CONTEXT
    assert response.meta["selected_start"] == OFFERED[2].start_time


# ---- Deposit ----


@pytest.mark.asyncio
async def test_deposit_link_created(backend):
    response = await _respond(backend, T.REASON_DEPOSIT_INTENT, "send me the deposit link")

    assert response.internal_notes == T.TAG_DEPOSIT_LINK
    assert response.field_updates["deposit_link_sent"] is True
    assert response.field_updates["deposit_link_url"] in response.bubbles[0]
    assert "$100" in response.bubbles[0]
    assert backend.crm.fields("c1")["opportunity_stage"] == "DEPOSIT_PENDING"


@pytest.mark.asyncio
async def test_deposit_link_resent_not_recreated(backend, monkeypatch):
    def should_not_be_called(*args, **kwargs):
        raise AssertionError("a second link was created")

    monkeypatch.setattr(stripe_service, "create_deposit_link_for_contact", should_not_be_called)
    fields = {"deposit_link_sent": True, "deposit_link_url": "https://pay.example/abc"}
    response = await _respond(backend, T.REASON_DEPOSIT_INTENT, "deposit link again?", fields)

    assert response.internal_notes == T.TAG_DEPOSIT_LINK_RESENT
    assert "https://pay.example/abc" in response.bubbles[0]
    assert response.field_updates == {}


@pytest.mark.asyncio
async def test_deposit_error_falls_back(backend, monkeypatch):
    def broken(*args, **kwargs):
        raise ValueError("stripe down")

    monkeypatch.setattr(stripe_service, "create_deposit_link_for_contact", broken)
    response = await _respond(backend, T.REASON_DEPOSIT_INTENT, "deposit")

    assert response.internal_notes == T.TAG_DEPOSIT_ERROR_FALLBACK
    assert response.field_updates == {}


@pytest.mark.asyncio
async def test_deposit_without_contact(backend):
    response = await _respond(backend, T.REASON_DEPOSIT_INTENT, "deposit", contact_id=None)
    assert response.internal_notes == T.TAG_DEPOSIT_MISSING_CONTACT


@pytest.mark.asyncio
async def test_deposit_already_paid_offers_slots(backend):
    fields = {**SCHEDULING_FIELDS, "deposit_paid": True}
    response = await _respond(backend, T.REASON_DEPOSIT_INTENT, "did my deposit go through?", fields)

    assert response.internal_notes == T.TAG_DEPOSIT_PAID_SCHEDULING
    assert response.bubbles[0].startswith("Thanks — your deposit is confirmed.")
    assert len(response.slots) == 3


@pytest.mark.asyncio
async def test_deposit_with_consult_question_answers_first(backend):
    response = await _respond(
        backend,
        T.REASON_DEPOSIT_WITH_CONSULT_QUESTION,
        "Is the consult a video call? Send the deposit link",
        intents=Intents(deposit_intent=True, consult_question_intent=True),
    )

    assert response.internal_notes == T.TAG_DEPOSIT_WITH_CONSULT_ANSWER
    assert len(response.bubbles) == 2
    assert response.bubbles[0].startswith("The video consult")
    assert "deposit" in response.bubbles[1]
    assert response.meta["deposit_path"] == T.TAG_DEPOSIT_LINK
    assert response.field_updates["consult_explained"] is True


@pytest.mark.parametrize(
    "message,key",
    [
        ("Do I have to come in person?", "consult_answer_in_person"),
        ("is it on zoom?", "consult_answer_video"),
        ("what is the consult?", "consult_answer_general"),
    ],
)
def test_consult_answer_key(message, key):
    assert consult_answer_key(message) == key


# ---- Reschedule / cancel ----


@pytest.mark.asyncio
async def test_cancel_without_appointment(backend):
    response = await _respond(backend, T.REASON_RESCHEDULE_OR_CANCEL, "cancel", intents=Intents(cancel_intent=True))
    assert response.internal_notes == T.TAG_CANCEL_NO_APPT
    assert backend.calendar.status_updates == []


@pytest.mark.asyncio
async def test_cancel_confirmed_appointment(backend):
    response = await _respond(
        backend,
        T.REASON_RESCHEDULE_OR_CANCEL,
        "I need to cancel",
        {"consult_appointment_id": "appt_9", "deposit_paid": True},
        Intents(cancel_intent=True),
    )

    assert response.internal_notes == T.TAG_CANCEL_CONFIRMED
    assert ("appt_9", "cancelled", None) in backend.calendar.status_updates
    assert response.field_updates["consult_appointment_id"] is None
    assert response.field_updates["appointment_booked"] is False
    assert response.meta["cancelled_appointment_id"] == "appt_9"


@pytest.mark.asyncio
async def test_cancel_hold_clears_hold_fields(backend):
    response = await _respond(
        backend,
        T.REASON_RESCHEDULE_OR_CANCEL,
        "cancel",
        {"hold_appointment_id": "hold_1", "hold_last_activity_at": MONDAY_MORNING.isoformat()},
        Intents(cancel_intent=True),
    )
    assert response.internal_notes == T.TAG_CANCEL_CONFIRMED
    assert response.field_updates["hold_appointment_id"] is None
    assert response.field_updates["hold_last_activity_at"] is None


@pytest.mark.asyncio
async def test_cancel_calendar_error(backend):
    backend.calendar.fail_status_updates = True
    response = await _respond(
        backend,
        T.REASON_RESCHEDULE_OR_CANCEL,
        "cancel",
        {"consult_appointment_id": "appt_9"},
        Intents(cancel_intent=True),
    )
    assert response.internal_notes == T.TAG_CANCEL_ERROR
    assert response.field_updates == {}


@pytest.mark.asyncio
async def test_reschedule_cancels_then_offers_new_slots(backend):
    response = await _respond(
        backend,
        T.REASON_RESCHEDULE_OR_CANCEL,
        "can we reschedule to next week?",
        {**SCHEDULING_FIELDS, "consult_appointment_id": "appt_9", "deposit_paid": True},
        Intents(reschedule_intent=True),
    )

    assert response.internal_notes == T.TAG_RESCHEDULE_SLOTS
    assert ("appt_9", "cancelled", None) in backend.calendar.status_updates
    assert response.field_updates["consult_appointment_id"] is None
    assert response.field_updates["times_sent"] is True
    # "next week" from Monday Mar 2 starts on Mar 9
    assert response.slots[0].display_text == "Monday, Mar 9 at 5pm"


@pytest.mark.asyncio
async def test_reschedule_without_availability(backend, monkeypatch):
    async def no_slots(*args, **kwargs):
        return []

    monkeypatch.setattr(availability, "get_available_slots", no_slots)
    response = await _respond(
        backend, T.REASON_RESCHEDULE_OR_CANCEL, "reschedule please", intents=Intents(reschedule_intent=True)
    )
    assert response.internal_notes == T.TAG_RESCHEDULE_FALLBACK


@pytest.mark.asyncio
async def test_unknown_reason_raises(backend):
    with pytest.raises(ValueError):
        await _respond(backend, "not_a_reason", "hello")
