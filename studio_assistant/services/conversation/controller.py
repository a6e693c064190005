"""
Conversation controller - runs one inbound-message turn end to end.

contact -> canonical state -> phase -> intents -> hold activity -> consult path
-> hard-skip route -> deterministic handler or generative responder -> persist
-> send. The controller never raises to the webhook: any unexpected failure
becomes a fallback bubble.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from studio_assistant.constants import fields as F
from studio_assistant.constants import response_tags as T
from studio_assistant.constants.event_types import (
    EVENT_INBOUND_MESSAGE,
    EVENT_INBOUND_MISSING_CONTACT,
    EVENT_TURN_FAILURE,
)
from studio_assistant.services import system_event_service
from studio_assistant.services.conversation import consult_path
from studio_assistant.services.holds import hold_lifecycle
from studio_assistant.services.integrations import crm_client, responder
from studio_assistant.services.intents.intent_classifier import IntentContext, Intents, classify
from studio_assistant.services.intents.objection_library import (
    format_objection_context,
    get_global_rules,
    get_objection_by_id,
)
from studio_assistant.services.messaging.message_composer import render_message
from studio_assistant.services.messaging.outbound import build_channel_context, send_bubbles
from studio_assistant.services.pipeline import stage_resolver
from studio_assistant.services.routing import deterministic_responses
from studio_assistant.services.routing.hard_skip import route
from studio_assistant.services.state.canonical_state import (
    CanonicalState,
    build_canonical_state,
    merge_custom_fields,
)
from studio_assistant.services.state.phase import compute_last_seen_diff, derive_phase
from studio_assistant.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    contact_id: str
    bubbles: list[str] = field(default_factory=list)
    internal_notes: str | None = None
    route_reason: str | None = None
    phase_before: str | None = None
    phase_after: str | None = None
    intents: dict[str, Any] = field(default_factory=dict)
    field_updates: dict[str, Any] = field(default_factory=dict)
    hold: dict[str, bool] = field(default_factory=dict)
    sent: int = 0
    aborted: bool = False
    already_sent: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _consult_choice_only(intents: Intents) -> bool:
    """A consult-path pick with nothing a deterministic handler must act on."""
    return intents.consult_path_choice_intent and not (
        intents.scheduling_intent
        or intents.deposit_intent
        or intents.slot_selection_intent
        or intents.reschedule_intent
        or intents.cancel_intent
    )


def _responder_context(
    message_text: str,
    state: CanonicalState,
    phase: str,
    intents: Intents,
    changed_fields: dict[str, Any],
) -> dict[str, Any]:
    objection = get_objection_by_id(intents.objection_type) if intents.objection_type else None
    return {
        "message": message_text,
        "phase": phase,
        "language": state.language,
        "canonical_state": state.to_dict(),
        "intents": intents.to_dict(),
        "changed_fields": changed_fields,
        "objection_context": format_objection_context(objection, state.language),
        "objection_rules": get_global_rules() if objection else {},
        "offer_times": not (objection is not None and objection.soft_close),
    }


async def _generate_reply(
    contact_id: str,
    message_text: str,
    state: CanonicalState,
    phase: str,
    intents: Intents,
    changed_fields: dict[str, Any],
) -> tuple[list[str], str, dict[str, Any]]:
    """(bubbles, tag, field updates) from the responder, or its canned fallback."""
    context = _responder_context(message_text, state, phase, intents, changed_fields)
    try:
        reply = await responder.generate_reply(context)
    except responder.ResponderError as e:
        logger.warning(f"Responder unavailable for {contact_id}, using fallback: {e}")
        return [render_message("responder_fallback", contact_id=contact_id)], T.TAG_RESPONDER_FALLBACK, {}

    updates = dict(reply.field_updates)
    # The responder may only explain the consult once
    if reply.meta.get("consult_explained"):
        updates[F.FIELD_CONSULT_EXPLAINED] = True
    return reply.bubbles, T.TAG_RESPONDER, updates


async def _run_turn(
    contact_id: str,
    message_text: str,
    payload_fields: dict[str, Any] | None,
    channel_context: dict | None,
    generation: int | None,
    now: datetime,
) -> TurnResult:
    contact = await crm_client.get_contact(contact_id)
    if not contact:
        system_event_service.warn(EVENT_INBOUND_MISSING_CONTACT, contact_id=contact_id)
        contact = {"id": contact_id}
    contact.setdefault("id", contact_id)
    if payload_fields:
        contact = merge_custom_fields(contact, payload_fields)
    channel_context = channel_context or build_channel_context(contact)

    state = build_canonical_state(contact)
    phase = derive_phase(state)
    intents = classify(message_text, IntentContext.from_state(state, phase))
    result = TurnResult(contact_id=contact_id, phase_before=phase, intents=intents.to_dict())
    system_event_service.info(
        EVENT_INBOUND_MESSAGE,
        contact_id=contact_id,
        payload={"phase": phase, "intents": intents.active()},
    )

    channel_type = channel_context.get("channel_type") or "unknown"
    if not state.opportunity_id and channel_type != "unknown":
        await stage_resolver.sync_pipeline_on_entry(contact_id, channel_type, contact=contact)

    evaluation, hold_updates = await hold_lifecycle.record_inbound_activity(contact, state, now)
    result.hold = asdict(evaluation)
    if hold_updates:
        contact = merge_custom_fields(contact, hold_updates)
        state = build_canonical_state(contact)

    # Scheduling and a consult pick together: record the pick, let scheduling answer
    if intents.consult_path_choice_intent and intents.scheduling_intent:
        choice = await consult_path.apply_path_choice(
            contact_id,
            message_text,
            existing_choice=state.consultation_type,
            is_locked=state.consultation_type_locked,
            apply_only=True,
            channel_context=channel_context,
        )
        if choice is not None:
            contact = merge_custom_fields(contact, choice.field_updates)
            state = build_canonical_state(contact)

    field_updates: dict[str, Any] = {}
    bubbles: list[str] = []
    already_sent = False

    if _consult_choice_only(intents):
        choice = await consult_path.apply_path_choice(
            contact_id,
            message_text,
            existing_choice=state.consultation_type,
            is_locked=state.consultation_type_locked,
            apply_only=False,
            channel_context=channel_context,
        )
        if choice is not None:
            contact = merge_custom_fields(contact, choice.field_updates)
            state = build_canonical_state(contact)
            result.internal_notes = T.TAG_CONSULT_PATH_CHOICE
            bubbles = [choice.response_body] if choice.response_body else []
            result.sent = 1 if choice.sent else 0
            already_sent = True

    if result.internal_notes is None:
        decision = route(intents, phase, state)
        result.route_reason = decision.reason
        if decision.skip:
            response = await deterministic_responses.build_deterministic_response(
                decision.reason,
                intents,
                phase,
                state,
                contact,
                message_text,
                context={"now": now},
            )
            bubbles = response.bubbles
            field_updates = response.field_updates
            result.internal_notes = response.internal_notes
        else:
            _, changed = compute_last_seen_diff(state, state.last_seen_snapshot)
            bubbles, result.internal_notes, field_updates = await _generate_reply(
                contact_id, message_text, state, phase, intents, changed
            )

    if field_updates:
        contact = merge_custom_fields(contact, field_updates)
        state = build_canonical_state(contact)

    new_phase = derive_phase(state)
    snapshot, _ = compute_last_seen_diff(state, state.last_seen_snapshot)
    persisted = {
        **field_updates,
        F.FIELD_LAST_SEEN_SNAPSHOT: json.dumps(snapshot),
        F.FIELD_AI_PHASE: new_phase,
    }
    try:
        await crm_client.update_system_fields(contact_id, persisted)
    except Exception as e:
        logger.error(f"Failed to persist turn fields for {contact_id}: {e}", exc_info=True)

    result.bubbles = bubbles
    result.field_updates = field_updates
    result.phase_after = new_phase
    result.already_sent = already_sent

    if not already_sent and bubbles:
        send = await send_bubbles(contact_id, bubbles, channel_context, generation=generation)
        result.sent = send.sent
        result.aborted = send.aborted

    logger.info(
        f"Turn for {contact_id}: {result.internal_notes} "
        f"(phase {phase} -> {new_phase}, sent {result.sent}/{len(bubbles)})"
    )
    return result


async def handle_inbound_message(
    contact_id: str,
    message_text: str | None,
    payload_fields: dict[str, Any] | None = None,
    channel_context: dict | None = None,
    generation: int | None = None,
    now: datetime | None = None,
) -> TurnResult:
    """
    Handle one inbound lead message.

    Args:
        contact_id: CRM contact id
        message_text: Message body
        payload_fields: Custom fields carried on the webhook (fresher than a CRM read)
        channel_context: Channel hints for replies (default: derived from the contact)
        generation: Outbound generation this turn replies under
        now: Current time (default: now, UTC)

    Returns:
        TurnResult; on unexpected failure a fallback bubble tagged turn_error_fallback
    """
    now = now or utc_now()
    message_text = message_text or ""
    try:
        return await _run_turn(contact_id, message_text, payload_fields, channel_context, generation, now)
    except Exception as e:
        logger.error(f"Turn failed for {contact_id}: {e}", exc_info=True)
        system_event_service.error(EVENT_TURN_FAILURE, contact_id=contact_id, exc=e)

    bubble = render_message("turn_error_fallback", contact_id=contact_id)
    result = TurnResult(contact_id=contact_id, bubbles=[bubble], internal_notes=T.TAG_TURN_ERROR_FALLBACK)
    send = await send_bubbles(contact_id, [bubble], channel_context, generation=generation)
    result.sent = send.sent
    result.aborted = send.aborted
    return result
