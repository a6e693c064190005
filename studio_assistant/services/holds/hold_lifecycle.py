"""
Hold lifecycle - the temporal state machine for unpaid appointment holds.

NONE -> ACTIVE (slot selected) -> WARNED (>= warning threshold) -> RELEASED
(>= release threshold), or ACTIVE|WARNED -> CONFIRMED on deposit payment.

The clock is hold_last_activity_at. Only genuine inbound activity moves it;
the periodic sweep evaluates with refresh_activity=False so sweeping never
keeps a hold alive. Every transition checks persisted flags first, so running
the sweep and the inbound path against the same hold is safe.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from studio_assistant.constants import fields as F
from studio_assistant.constants.event_types import EVENT_HOLD_RELEASED, EVENT_HOLD_WARNING_SENT
from studio_assistant.core.config import settings
from studio_assistant.services import system_event_service
from studio_assistant.services.integrations import calendar_client, crm_client
from studio_assistant.services.messaging.message_composer import render_message
from studio_assistant.services.messaging.outbound import build_channel_context, send_single
from studio_assistant.services.state.canonical_state import CanonicalState, get_contact_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldEvaluation:
    warned: bool = False
    released: bool = False
    refreshed: bool = False


NO_OP = HoldEvaluation()


def clear_hold_fields() -> dict[str, Any]:
    """Field updates that end a hold (release, confirmation, cancellation)."""
    updates: dict[str, Any] = {key: None for key in F.HOLD_FIELDS}
    updates[F.FIELD_HOLD_WARNING_SENT] = False
    return updates


def release_field_updates(state: CanonicalState) -> dict[str, Any]:
    """
    Field updates for a released hold.

    Also drops the offered-slot cache and the unpaid deposit link so a stale
    list is never reused, and remembers the released slot for "is it still open?".
    """
    updates = clear_hold_fields()
    updates.update(
        {
            F.FIELD_LAST_SENT_SLOTS: None,
            F.FIELD_TIMES_SENT: False,
            F.FIELD_DEPOSIT_LINK_SENT: False,
            F.FIELD_DEPOSIT_LINK_URL: None,
        }
    )
    if state.hold_slot:
        updates[F.FIELD_LAST_RELEASED_SLOT] = json.dumps(state.hold_slot)
    return updates


def elapsed_minutes(state: CanonicalState, now: datetime) -> float | None:
    if state.hold_last_activity_at is None:
        return None
    return (now - state.hold_last_activity_at).total_seconds() / 60


async def _release(contact: dict, contact_id: str, state: CanonicalState, elapsed: float) -> bool:
    """Cancel, clear and notify. False when the fields stay set; the next sweep retries."""
    try:
        await calendar_client.update_appointment_status(
            state.hold_appointment_id, F.APPOINTMENT_STATUS_CANCELLED
        )
    except Exception as e:
        logger.error(
            f"Failed to cancel hold appointment {state.hold_appointment_id} for {contact_id}: {e}",
            exc_info=True,
        )

    try:
        await crm_client.update_system_fields(contact_id, release_field_updates(state))
    except Exception as e:
        logger.error(f"Failed to clear hold fields on release for {contact_id}: {e}", exc_info=True)
        return False

    await send_single(contact_id, render_message("hold_release"), build_channel_context(contact))

    system_event_service.info(
        EVENT_HOLD_RELEASED,
        contact_id=contact_id,
        payload={"appointment_id": state.hold_appointment_id, "elapsed_minutes": round(elapsed, 1)},
    )
    return True


async def _warn(contact: dict, contact_id: str, state: CanonicalState, elapsed: float) -> None:
    await send_single(contact_id, render_message("hold_warning"), build_channel_context(contact))
    try:
        await crm_client.update_system_fields(contact_id, {F.FIELD_HOLD_WARNING_SENT: True})
    except Exception as e:
        logger.error(f"Failed to mark hold warning for {contact_id}: {e}", exc_info=True)

    system_event_service.info(
        EVENT_HOLD_WARNING_SENT,
        contact_id=contact_id,
        payload={"appointment_id": state.hold_appointment_id, "elapsed_minutes": round(elapsed, 1)},
    )


async def evaluate_hold(
    contact: dict | None,
    state: CanonicalState,
    now: datetime,
    *,
    refresh_activity: bool = True,
) -> HoldEvaluation:
    """
    Decide among no-op, refresh, warn and release for a contact's hold.

    No-op, in order: no contact id, no hold id, deposit paid, missing/invalid
    last-activity timestamp. Release wins over warning when both thresholds
    have passed. A warning never moves the activity clock.

    Args:
        contact: CRM contact (id and channel hints)
        state: Canonical state for the contact
        now: Current time (aware)
        refresh_activity: Refresh the clock below both thresholds (inbound path)

    Returns:
        HoldEvaluation(warned, released, refreshed)
    """
    contact_id = get_contact_id(contact)
    if not contact_id or not state.hold_appointment_id or state.deposit_paid:
        return NO_OP

    elapsed = elapsed_minutes(state, now)
    if elapsed is None:
        logger.debug(f"Hold {state.hold_appointment_id} has no valid activity timestamp, skipping")
        return NO_OP

    if elapsed >= settings.hold_release_minutes:
        released = await _release(contact, contact_id, state, elapsed)
        return HoldEvaluation(released=released)

    if elapsed >= settings.hold_warning_minutes:
        if state.hold_warning_sent:
            return NO_OP
        await _warn(contact, contact_id, state, elapsed)
        return HoldEvaluation(warned=True)

    if not refresh_activity:
        return NO_OP

    try:
        await crm_client.update_system_fields(contact_id, {F.FIELD_HOLD_LAST_ACTIVITY_AT: now.isoformat()})
    except Exception as e:
        logger.error(f"Failed to refresh hold activity for {contact_id}: {e}", exc_info=True)
        return NO_OP
    return HoldEvaluation(refreshed=True)


async def record_inbound_activity(
    contact: dict | None, state: CanonicalState, now: datetime
) -> tuple[HoldEvaluation, dict[str, Any]]:
    """
    Inbound-message path: a lead message keeps an active hold alive.

    A hold already past the release threshold is released instead (the lead
    took too long). Otherwise the clock restarts and the warning re-arms.

    Returns:
        (evaluation, field updates already persisted) so the caller can merge
        them into its in-memory contact
    """
    contact_id = get_contact_id(contact)
    if not contact_id or not state.has_active_hold:
        return NO_OP, {}

    elapsed = elapsed_minutes(state, now)
    if elapsed is not None and elapsed >= settings.hold_release_minutes:
        evaluation = await evaluate_hold(contact, state, now, refresh_activity=False)
        return evaluation, release_field_updates(state) if evaluation.released else {}

    updates = {F.FIELD_HOLD_LAST_ACTIVITY_AT: now.isoformat(), F.FIELD_HOLD_WARNING_SENT: False}
    try:
        await crm_client.update_system_fields(contact_id, updates)
    except Exception as e:
        logger.error(f"Failed to record hold activity for {contact_id}: {e}", exc_info=True)
        return NO_OP, {}
    return HoldEvaluation(refreshed=True), updates
