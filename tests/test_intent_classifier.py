"""
Tests for intent classification and the objection catalogue.
"""

import pytest

from studio_assistant.constants import phases as P
from studio_assistant.services.intents.intent_classifier import (
    BOOKING_SIGNAL_STRONG,
    BOOKING_SIGNAL_WEAK,
    IntentContext,
    classify,
)
from studio_assistant.services.intents.objection_library import (
    detect_objection,
    format_objection_context,
    get_objection_by_id,
    get_objection_ids,
)


@pytest.mark.parametrize("message", [None, "", "   "])
def test_empty_message_has_no_intents(message):
    intents = classify(message)
    assert intents.active() == []
    assert intents.objection_type is None
    assert intents.booking_signal is None


def test_scheduling_is_strong_booking_signal():
    intents = classify("What times do you have next week?")
    assert intents.scheduling_intent is True
    assert intents.booking_intent is True
    assert intents.booking_signal == BOOKING_SIGNAL_STRONG


def test_video_call_this_week_question():
    intents = classify("Video call this week—what times?")
    assert intents.scheduling_intent is True
    assert intents.consult_path_choice_intent is True
    assert intents.consult_question_intent is True
    assert intents.deposit_intent is False
    assert intents.slot_selection_intent is False


def test_weak_affirmative_needs_context():
    """A bare "ok" is only booking intent once there is something to book."""
    cold = classify("ok")
    assert cold.booking_signal == BOOKING_SIGNAL_WEAK
    assert cold.booking_intent is False

    with_info = classify("ok", IntentContext(has_core_info=True))
    assert with_info.booking_intent is True

    late = classify("sounds good!", IntentContext(phase=P.PHASE_SCHEDULING))
    assert late.booking_intent is True


def test_translator_affirmation_is_not_booking_intent():
    intents = classify("yes", IntentContext(has_core_info=True, translator_pending=True))
    assert intents.translator_affirm_intent is True
    assert intents.booking_intent is False


def test_explicit_slot_reference_without_offered_slots():
    assert classify("option 2").slot_selection_intent is True
    assert classify("the second one").slot_selection_intent is True


@pytest.mark.parametrize("message", ["I'll take slot 2", "number 3 please", "choice #1"])
def test_slot_number_wording_is_a_selection(message):
    intents = classify(message, IntentContext(has_offered_slots=True))
    assert intents.slot_selection_intent is True
    assert classify(message).slot_selection_intent is True


@pytest.mark.parametrize("message", ["the second", "2nd works", "I'll go with the last"])
def test_ordinal_pick_counts_once_slots_were_offered(message):
    assert classify(message, IntentContext(has_offered_slots=True)).slot_selection_intent is True
    assert classify(message).slot_selection_intent is False


def test_descriptive_slot_reference_requires_offered_slots():
    assert classify("Tuesday at 5pm").slot_selection_intent is False
    intents = classify("Tuesday at 5pm", IntentContext(has_offered_slots=True))
    assert intents.slot_selection_intent is True
    assert classify("2", IntentContext(has_offered_slots=True)).slot_selection_intent is True


def test_reschedule_and_cancel():
    assert classify("Can we reschedule?").reschedule_intent is True
    assert classify("I need to cancel").cancel_intent is True
    assert classify("I can't make it").cancel_intent is True


@pytest.mark.parametrize(
    "message",
    ["Can we move my appointment to Friday?", "can I move it to next week", "need to push it back"],
)
def test_moving_a_booking_is_reschedule(message):
    assert classify(message).reschedule_intent is True


@pytest.mark.parametrize(
    "message",
    ["Can we move the design a bit higher on my arm?", "move it a little to the left", "move my tattoo lower"],
)
def test_moving_the_design_is_not_reschedule(message):
    assert classify(message, IntentContext(phase=P.PHASE_BOOKED)).reschedule_intent is False


def test_deposit_and_consult_question():
    intents = classify("Can you send the deposit link? Is the consult on zoom?")
    assert intents.deposit_intent is True
    assert intents.consult_question_intent is True


def test_price_question():
    assert classify("How much does a half sleeve cost?").process_or_price_question_intent is True


def test_objection_detected_on_intents():
    intents = classify("That's too expensive for me")
    assert intents.objection_intent is True
    assert intents.objection_type == "price_too_high"


# ---- Objection library ----


def test_detect_objection_examples():
    assert detect_objection("Está muy caro").id == "price_too_high"
    assert detect_objection("let me think about it").id == "need_to_think"
    assert detect_objection("I'm nervous, it's my first tattoo").id == "fear_first_tattoo"


@pytest.mark.parametrize("message", [None, "", 42, "I love this design"])
def test_detect_objection_none(message):
    assert detect_objection(message) is None


def test_catalogue_ids_and_lookup():
    ids = get_objection_ids()
    assert ids[0] == "price_too_high"
    assert len(ids) == len(set(ids))
    assert get_objection_by_id("need_to_think").soft_close is True
    assert get_objection_by_id("nope") is None


def test_every_objection_has_both_languages():
    for objection_id in get_objection_ids():
        objection = get_objection_by_id(objection_id)
        assert objection.template("en")
        assert objection.template("es")
        assert objection.closing("fr") == objection.closing("en")


def test_format_objection_context_soft_close():
    context = format_objection_context(get_objection_by_id("need_to_think"), "en")
    assert "OBJECTION DETECTED: NEED_TO_THINK" in context
    assert "SOFT CLOSE: do NOT offer specific times" in context


def test_format_objection_context_financing_only_for_total():
    context = format_objection_context(get_objection_by_id("price_too_high"), "es")
    assert "Response template (ES)" in context
    assert "NOT the deposit" in context
    other = format_objection_context(get_objection_by_id("ask_partner"), "en")
    assert "Do NOT mention financing for the deposit" in other


def test_format_objection_context_none():
    assert format_objection_context(None) == ""
