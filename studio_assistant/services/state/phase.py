"""
Phase derivation - pure function of canonical state (no IO).

The phase is recomputed every turn; it is written back to the CRM only as a
convenience for humans reading the contact record.
"""

from studio_assistant.constants.phases import (
    LATE_PHASES,
    PHASE_BOOKED,
    PHASE_CONSULT_PATH,
    PHASE_DEPOSIT_PENDING,
    PHASE_DISCOVERY,
    PHASE_INTAKE,
    PHASE_QUALIFICATION,
    PHASE_QUALIFIED,
    PHASE_SCHEDULING,
)
from studio_assistant.services.state.canonical_state import CanonicalState

# Fields whose changes are tracked between turns
TRACKED_FIELDS = (
    "tattoo_summary",
    "tattoo_placement",
    "tattoo_style",
    "timeline",
    "consultation_type",
)


def derive_phase(state: CanonicalState | None) -> str:
    """
    Derive the conversation phase from canonical state.

    Precedence: booked > qualified > deposit_pending > scheduling > consult_path
    > qualification > intake > discovery.
    """
    if state is None:
        return PHASE_INTAKE

    consult_chosen = bool(state.consultation_type) or state.consultation_type_locked
    slots_sent = state.times_sent or bool(state.last_sent_slots)
    timeline_captured = bool(state.timeline)

    if state.appointment_booked and state.deposit_paid:
        return PHASE_BOOKED
    if state.deposit_paid:
        return PHASE_QUALIFIED
    if state.hold_appointment_id or state.deposit_link_sent:
        return PHASE_DEPOSIT_PENDING
    if consult_chosen and slots_sent:
        return PHASE_SCHEDULING
    if timeline_captured and not consult_chosen:
        return PHASE_CONSULT_PATH
    if state.has_core_info and state.tattoo_size and not timeline_captured:
        return PHASE_QUALIFICATION
    if not state.has_core_info:
        return PHASE_INTAKE
    return PHASE_DISCOVERY


def is_late_phase(phase: str | None) -> bool:
    return phase in LATE_PHASES


def compute_last_seen_diff(
    state: CanonicalState, previous_snapshot: dict | None = None
) -> tuple[dict, dict]:
    """
    Compare tracked fields against the last persisted snapshot.

    Returns:
        (updated_snapshot, changed_fields)
    """
    previous = previous_snapshot or {}
    updated = dict(previous)
    changed = {}
    for key in TRACKED_FIELDS:
        current = getattr(state, key, None)
        if current != previous.get(key):
            changed[key] = current
            updated[key] = current
    return updated, changed
