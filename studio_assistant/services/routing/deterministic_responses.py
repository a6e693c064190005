"""
Deterministic response builder - owns every hard-skipped turn.

One handler per routing reason. Handlers perform their side effects through
booking_actions and return a DeterministicResponse whose field_updates the
controller persists in a single write. Every path reports a stable
internal_notes tag (constants.response_tags).
"""

import dataclasses
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from studio_assistant.constants import fields as F
from studio_assistant.constants import response_tags as T
from studio_assistant.constants import stages as S
from studio_assistant.constants.event_types import EVENT_SLOT_BOOKING_FAILURE
from studio_assistant.core.config import settings
from studio_assistant.services import system_event_service
from studio_assistant.services.intents.intent_classifier import Intents
from studio_assistant.services.messaging.message_composer import render_message
from studio_assistant.services.pipeline import stage_resolver
from studio_assistant.services.routing import booking_actions
from studio_assistant.services.scheduling.slot_parsing import format_slot_list, select_slot
from studio_assistant.services.state.canonical_state import CanonicalState, Slot, get_contact_id
from studio_assistant.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

_IN_PERSON = re.compile(r"\b(in[-\s]?person|studio|come in|visit)\b")
_VIDEO = re.compile(r"\b(video|zoom|call|translat(or|e))\b")


@dataclass
class DeterministicResponse:
    bubbles: list[str]
    internal_notes: str
    meta: dict[str, Any] = field(default_factory=dict)
    field_updates: dict[str, Any] = field(default_factory=dict)
    slots: list[Slot] = field(default_factory=list)


@dataclass
class _Turn:
    reason: str
    intents: Intents
    phase: str | None
    state: CanonicalState
    contact: dict
    contact_id: str | None
    message_text: str
    context: dict
    now: datetime

    def respond(
        self,
        bubbles: list[str],
        tag: str,
        field_updates: dict[str, Any] | None = None,
        slots: list[Slot] | None = None,
        **meta: Any,
    ) -> DeterministicResponse:
        return DeterministicResponse(
            bubbles=bubbles,
            internal_notes=tag,
            meta={"ai_phase": self.phase, "reason": self.reason, **meta},
            field_updates=field_updates or {},
            slots=slots or [],
        )


async def _move_to_deposit_pending(turn: _Turn) -> None:
    try:
        await stage_resolver.transition_to_stage(turn.contact_id, S.STAGE_DEPOSIT_PENDING, contact=turn.contact)
    except Exception as e:
        logger.error(f"Failed to move {turn.contact_id} to DEPOSIT_PENDING: {e}", exc_info=True)


# ---- Scheduling ----


async def _offer_slots(
    turn: _Turn,
    tag: str = T.TAG_SCHEDULING_SLOTS,
    state: CanonicalState | None = None,
    extra_updates: dict[str, Any] | None = None,
    fallback_tag: str = T.TAG_SCHEDULING_FALLBACK,
) -> DeterministicResponse:
    state = state or turn.state
    updates = dict(extra_updates or {})
    slots = await booking_actions.find_slots(state, turn.message_text, turn.contact_id, now=turn.now)

    if not slots:
        updates[F.FIELD_CONSULT_EXPLAINED] = True
        return turn.respond([render_message("scheduling_fallback")], fallback_tag, updates)

    released = booking_actions.released_slot_still_open(state, slots)
    if released is not None and tag == T.TAG_SCHEDULING_SLOTS:
        slots = [released] + [s for s in slots if s.start_time != released.start_time]
        updates.update(booking_actions.offered_slot_updates(slots))
        message = render_message(
            "scheduling_released_slot_open",
            display=released.display_text,
            slot_list=format_slot_list(slots, settings.max_offered_slots),
        )
        return turn.respond([message], T.TAG_SCHEDULING_RELEASED_SLOT_OPEN, updates, slots)

    updates.update(booking_actions.offered_slot_updates(slots))
    message = render_message("scheduling_offer", slot_list=format_slot_list(slots, settings.max_offered_slots))
    return turn.respond([message], tag, updates, slots)


async def _handle_scheduling(turn: _Turn) -> DeterministicResponse:
    return await _offer_slots(turn)


async def _handle_translator_affirm(turn: _Turn) -> DeterministicResponse:
    updates = {
        F.FIELD_TRANSLATOR_CONFIRMED: True,
        F.FIELD_TRANSLATOR_NEEDED: True,
        F.FIELD_CONSULTATION_TYPE: F.CONSULTATION_APPOINTMENT,
        F.FIELD_CONSULTATION_TYPE_LOCKED: True,
    }
    state = dataclasses.replace(
        turn.state,
        translator_confirmed=True,
        translator_needed=True,
        consultation_type=F.CONSULTATION_APPOINTMENT,
        consultation_type_locked=True,
    )
    return await _offer_slots(turn, T.TAG_TRANSLATOR_CONFIRMED_SLOTS, state=state, extra_updates=updates)


# ---- Slot selection ----


async def _handle_slot_selection(turn: _Turn) -> DeterministicResponse:
    slots, source = await booking_actions.recover_offered_slots(
        turn.state, turn.contact_id, turn.message_text, turn.context, now=turn.now
    )
    if not slots:
        return turn.respond(
            [render_message("scheduling_fallback")],
            T.TAG_SLOT_NO_SLOTS,
            {F.FIELD_CONSULT_EXPLAINED: True},
        )

    # A list we had to rebuild must be persisted, or the lead's numbering won't match next turn
    list_updates = booking_actions.offered_slot_updates(slots) if source != booking_actions.SLOT_SOURCE_STATE else {}
    slot_list = format_slot_list(slots, settings.max_offered_slots)

    chosen, parse_meta = select_slot(turn.message_text, slots, settings.max_offered_slots)
    if chosen is None:
        logger.info(f"Slot selection unmatched for {turn.contact_id}: {parse_meta}")
        return turn.respond(
            [render_message("slot_clarify", slot_list=slot_list)],
            T.TAG_SLOT_CLARIFY,
            list_updates,
            slots,
            slot_source=source,
            parse=parse_meta,
        )

    if turn.state.deposit_paid and turn.contact_id:
        try:
            updates = await booking_actions.book_paid_consult(turn.contact_id, turn.state, chosen)
        except Exception as e:
            return _booking_failed(turn, e, chosen, slots, list_updates, slot_list)
        return turn.respond(
            [render_message("slot_already_paid", display=chosen.display_text)],
            T.TAG_SLOT_ALREADY_PAID,
            {**list_updates, **updates},
            slots,
            slot_source=source,
            selected_start=chosen.start_time,
        )

    if not turn.contact_id:
        return _booking_failed(turn, ValueError("missing contact id"), chosen, slots, list_updates, slot_list)

    try:
        updates, url = await booking_actions.place_hold(turn.contact_id, turn.state, chosen, turn.now)
    except Exception as e:
        return _booking_failed(turn, e, chosen, slots, list_updates, slot_list)

    await _move_to_deposit_pending(turn)
    message = render_message(
        "hold_created",
        display=chosen.display_text,
        amount=booking_actions.deposit_amount_display(),
        url=url,
        hold_minutes=settings.hold_release_minutes,
    )
    return turn.respond(
        [message],
        T.TAG_SLOT_HOLD_AND_DEPOSIT,
        {**list_updates, **updates},
        slots,
        slot_source=source,
        selected_start=chosen.start_time,
    )


def _booking_failed(
    turn: _Turn,
    exc: Exception,
    chosen: Slot,
    slots: list[Slot],
    list_updates: dict[str, Any],
    slot_list: str,
) -> DeterministicResponse:
    logger.error(f"Booking {chosen.start_time} failed for {turn.contact_id}: {exc}", exc_info=True)
    system_event_service.error(
        EVENT_SLOT_BOOKING_FAILURE,
        contact_id=turn.contact_id,
        payload={"start_time": chosen.start_time, "calendar_id": chosen.calendar_id},
        exc=exc,
    )
    # Same list again so the lead can retry without a new availability lookup
    return turn.respond(
        [render_message("slot_booking_failed", slot_list=slot_list)],
        T.TAG_SLOT_BOOKING_FAILED,
        list_updates,
        slots,
    )


# ---- Deposit ----


async def _handle_deposit(turn: _Turn) -> DeterministicResponse:
    state = turn.state
    if state.deposit_paid:
        if state.last_sent_slots:
            slots = list(state.last_sent_slots[:3])
            updates = {}
        else:
            slots = await booking_actions.find_slots(state, turn.message_text, turn.contact_id, now=turn.now)
            updates = booking_actions.offered_slot_updates(slots) if slots else {}
        if slots:
            message = render_message("deposit_paid_slots", slot_list=format_slot_list(slots))
            return turn.respond([message], T.TAG_DEPOSIT_PAID_SCHEDULING, updates, slots)
        return turn.respond([render_message("deposit_paid_fallback")], T.TAG_DEPOSIT_PAID_SCHEDULING_FALLBACK)

    if not turn.contact_id:
        return turn.respond([render_message("deposit_missing_contact")], T.TAG_DEPOSIT_MISSING_CONTACT)

    amount = booking_actions.deposit_amount_display()
    if state.deposit_link_sent and state.deposit_link_url:
        message = render_message("deposit_link_resent", amount=amount, url=state.deposit_link_url)
        return turn.respond([message], T.TAG_DEPOSIT_LINK_RESENT)

    try:
        link = booking_actions.create_deposit_link(turn.contact_id)
    except Exception as e:
        logger.error(f"Deposit link failed for {turn.contact_id}: {e}", exc_info=True)
        return turn.respond([render_message("deposit_error_fallback")], T.TAG_DEPOSIT_ERROR_FALLBACK)

    await _move_to_deposit_pending(turn)
    updates = {
        F.FIELD_DEPOSIT_LINK_SENT: True,
        F.FIELD_DEPOSIT_LINK_URL: link["url"],
        F.FIELD_CONSULT_EXPLAINED: True,
    }
    message = render_message("deposit_link", amount=amount, url=link["url"])
    return turn.respond([message], T.TAG_DEPOSIT_LINK, updates)


def consult_answer_key(message_text: str | None) -> str:
    """Which consult question the lead asked: in person, video, or how consults work."""
    lower = (message_text or "").lower()
    if _IN_PERSON.search(lower):
        return "consult_answer_in_person"
    if _VIDEO.search(lower):
        return "consult_answer_video"
    return "consult_answer_general"


async def _handle_deposit_with_consult_question(turn: _Turn) -> DeterministicResponse:
    # The question is answered first; the deposit part follows
    answer = render_message(consult_answer_key(turn.message_text))
    deposit = await _handle_deposit(turn)
    updates = {**deposit.field_updates, F.FIELD_CONSULT_EXPLAINED: True}
    return turn.respond(
        [answer, *deposit.bubbles],
        T.TAG_DEPOSIT_WITH_CONSULT_ANSWER,
        updates,
        deposit.slots,
        deposit_path=deposit.internal_notes,
    )


# ---- Reschedule / cancel ----


async def _handle_reschedule_or_cancel(turn: _Turn) -> DeterministicResponse:
    target = booking_actions.cancellation_target(turn.state)

    if turn.intents.reschedule_intent:
        updates: dict[str, Any] = {}
        state = turn.state
        if target and turn.contact_id:
            try:
                updates = await booking_actions.cancel_appointment(turn.state, target)
                state = dataclasses.replace(turn.state, last_sent_slots=(), times_sent=False)
            except Exception as e:
                logger.error(f"Failed to cancel {target} for reschedule ({turn.contact_id}): {e}", exc_info=True)
        return await _offer_slots(
            turn,
            T.TAG_RESCHEDULE_SLOTS,
            state=state,
            extra_updates=updates,
            fallback_tag=T.TAG_RESCHEDULE_FALLBACK,
        )

    if not target or not turn.contact_id:
        return turn.respond([render_message("cancel_no_appointment")], T.TAG_CANCEL_NO_APPT)

    try:
        updates = await booking_actions.cancel_appointment(turn.state, target)
    except Exception as e:
        logger.error(f"Failed to cancel {target} for {turn.contact_id}: {e}", exc_info=True)
        return turn.respond([render_message("cancel_error")], T.TAG_CANCEL_ERROR)
    return turn.respond(
        [render_message("cancel_confirmed")], T.TAG_CANCEL_CONFIRMED, updates, cancelled_appointment_id=target
    )


Handler = Callable[[_Turn], Awaitable[DeterministicResponse]]

HANDLERS: dict[str, Handler] = {
    T.REASON_RESCHEDULE_OR_CANCEL: _handle_reschedule_or_cancel,
    T.REASON_SLOT_SELECTION: _handle_slot_selection,
    T.REASON_DEPOSIT_WITH_CONSULT_QUESTION: _handle_deposit_with_consult_question,
    T.REASON_DEPOSIT_INTENT: _handle_deposit,
    T.REASON_SCHEDULING_INTENT: _handle_scheduling,
    T.REASON_TRANSLATOR_AFFIRM_INTENT: _handle_translator_affirm,
}


async def build_deterministic_response(
    reason: str,
    intents: Intents,
    phase: str | None,
    state: CanonicalState,
    contact: dict | None,
    message_text: str | None,
    context: dict | None = None,
) -> DeterministicResponse:
    """
    Run the deterministic handler for a hard-skip reason.

    Args:
        reason: Routing reason from the hard-skip router
        intents: Classified intents for this turn
        phase: Derived conversation phase
        state: Canonical state
        contact: CRM contact
        message_text: Inbound message text
        context: Optional turn context ("slots" offered this turn, "now")

    Returns:
        DeterministicResponse

    Raises:
        ValueError: Unknown reason
    """
    handler = HANDLERS.get(reason)
    if handler is None:
        raise ValueError(f"No deterministic handler for reason: {reason}")

    context = context or {}
    turn = _Turn(
        reason=reason,
        intents=intents,
        phase=phase,
        state=state,
        contact=contact or {},
        contact_id=get_contact_id(contact),
        message_text=message_text or "",
        context=context,
        now=context.get("now") or utc_now(),
    )
    response = await handler(turn)
    logger.info(f"Deterministic response for {turn.contact_id}: {response.internal_notes}")
    return response
