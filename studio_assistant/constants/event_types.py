"""
Event type constants for structured system events.

Use these instead of string literals to ensure consistency.
"""

# ---- Inbound messages ----
EVENT_INBOUND_MESSAGE = "crm.inbound_message"
EVENT_INBOUND_MISSING_CONTACT = "crm.inbound_missing_contact"
EVENT_TURN_FAILURE = "conversation.turn_failure"

# ---- Outbound ----
EVENT_SEND_FAILURE = "crm.send_failure"
EVENT_SEND_SUPERSEDED = "crm.send_superseded"

# ---- Stripe ----
EVENT_STRIPE_SIGNATURE_VERIFICATION_FAILURE = "stripe.signature_verification_failure"
EVENT_STRIPE_WEBHOOK_FAILURE = "stripe.webhook_failure"
EVENT_STRIPE_CONTACT_NOT_RESOLVED = "stripe.contact_not_resolved"
EVENT_DEPOSIT_PAID = "deposit_paid"

# ---- Holds ----
EVENT_HOLD_CREATED = "hold.created"
EVENT_HOLD_WARNING_SENT = "hold.warning_sent"
EVENT_HOLD_RELEASED = "hold.released"
EVENT_HOLD_CONFIRMED = "hold.confirmed"
EVENT_HOLD_SWEEP_COMPLETED = "hold.sweep_completed"

# ---- Calendar ----
EVENT_CALENDAR_NO_SLOTS_FALLBACK = "calendar.no_slots_fallback"
EVENT_SLOT_BOOKING_FAILURE = "calendar.slot_booking_failure"
EVENT_APPOINTMENT_SIBLING_SYNC = "calendar.sibling_sync"

# ---- Pipeline ----
EVENT_STAGE_TRANSITION = "pipeline.stage_transition"
EVENT_STAGE_TRANSITION_FAILURE = "pipeline.stage_transition_failure"
