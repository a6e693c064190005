"""
Stable internal-notes tags reported by each deterministic path.

Tags are part of the observable contract: logs and tests assert on them.
"""

# ---- Routing reasons ----
REASON_RESCHEDULE_OR_CANCEL = "reschedule_or_cancel"
REASON_SLOT_SELECTION = "slot_selection"
REASON_DEPOSIT_WITH_CONSULT_QUESTION = "deposit_with_consult_question"
REASON_DEPOSIT_INTENT = "deposit_intent"
REASON_SCHEDULING_INTENT = "scheduling_intent"
REASON_TRANSLATOR_AFFIRM_INTENT = "translator_affirm_intent"

# ---- Scheduling ----
TAG_SCHEDULING_SLOTS = "deterministic_scheduling_slots"
TAG_SCHEDULING_FALLBACK = "deterministic_scheduling_fallback"
TAG_SCHEDULING_RELEASED_SLOT_OPEN = "deterministic_scheduling_released_slot_open"

# ---- Slot selection ----
TAG_SLOT_HOLD_AND_DEPOSIT = "deterministic_slot_selection_hold_and_deposit"
TAG_SLOT_CLARIFY = "deterministic_slot_selection_clarify"
TAG_SLOT_BOOKING_FAILED = "deterministic_slot_selection_booking_failed"
TAG_SLOT_NO_SLOTS = "deterministic_slot_selection_no_slots"
TAG_SLOT_ALREADY_PAID = "deterministic_slot_selection_already_paid"

# ---- Deposit ----
TAG_DEPOSIT_PAID_SCHEDULING = "deterministic_deposit_paid_scheduling"
TAG_DEPOSIT_PAID_SCHEDULING_FALLBACK = "deterministic_deposit_paid_scheduling_fallback"
TAG_DEPOSIT_LINK = "deterministic_deposit_link"
TAG_DEPOSIT_LINK_RESENT = "deterministic_deposit_link_resent"
TAG_DEPOSIT_MISSING_CONTACT = "deterministic_deposit_missing_contact"
TAG_DEPOSIT_ERROR_FALLBACK = "deterministic_deposit_error_fallback"
TAG_DEPOSIT_WITH_CONSULT_ANSWER = "deterministic_deposit_with_consult_answer"

# ---- Reschedule / cancel ----
TAG_RESCHEDULE_SLOTS = "deterministic_reschedule_slots"
TAG_RESCHEDULE_FALLBACK = "deterministic_reschedule_fallback"
TAG_CANCEL_CONFIRMED = "deterministic_cancel_confirmed"
TAG_CANCEL_NO_APPT = "deterministic_cancel_no_appt"
TAG_CANCEL_ERROR = "deterministic_cancel_error"

# ---- Translator ----
TAG_TRANSLATOR_CONFIRMED_SLOTS = "deterministic_translator_confirmed_slots"

# ---- Non-deterministic handlers ----
TAG_CONSULT_PATH_CHOICE = "consult_path_choice"
TAG_RESPONDER = "generative_responder"
TAG_RESPONDER_FALLBACK = "generative_responder_fallback"
TAG_TURN_ERROR_FALLBACK = "turn_error_fallback"
