"""
CRM custom-field keys - centralized so every read/write uses the same names.

The contact record's custom-field bag is the only durable store; these keys are
its schema.
"""

# ---- Tattoo intake ----
FIELD_TATTOO_SUMMARY = "tattoo_summary"
FIELD_TATTOO_PLACEMENT = "tattoo_placement"
FIELD_TATTOO_SIZE = "size_of_tattoo"
FIELD_TATTOO_STYLE = "tattoo_style"
FIELD_TIMELINE = "how_soon_is_client_deciding"
FIELD_LANGUAGE = "language_preference"

# ---- Consult path ----
FIELD_CONSULTATION_TYPE = "consultation_type"
FIELD_CONSULTATION_TYPE_LOCKED = "consultation_type_locked"
FIELD_CONSULT_EXPLAINED = "consult_explained"
FIELD_LANGUAGE_BARRIER_EXPLAINED = "language_barrier_explained"
FIELD_TRANSLATOR_EXPLAINED = "translator_explained"
FIELD_TRANSLATOR_NEEDED = "translator_needed"
FIELD_TRANSLATOR_CONFIRMED = "translator_confirmed"

# ---- Deposit ----
FIELD_DEPOSIT_LINK_SENT = "deposit_link_sent"
FIELD_DEPOSIT_LINK_URL = "deposit_link_url"
FIELD_DEPOSIT_PAID = "deposit_paid"

# ---- Hold ----
FIELD_HOLD_APPOINTMENT_ID = "hold_appointment_id"
FIELD_HOLD_CREATED_AT = "hold_created_at"
FIELD_HOLD_LAST_ACTIVITY_AT = "hold_last_activity_at"
FIELD_HOLD_WARNING_SENT = "hold_warning_sent"
FIELD_HOLD_SLOT = "hold_slot"
FIELD_LAST_RELEASED_SLOT = "last_released_slot"

# ---- Slots / appointments ----
FIELD_TIMES_SENT = "times_sent"
FIELD_LAST_SENT_SLOTS = "last_sent_slots"
FIELD_CONSULT_APPOINTMENT_ID = "consult_appointment_id"
FIELD_APPOINTMENT_ID = "appointment_id"
FIELD_APPOINTMENT_BOOKED = "appointment_booked"

# ---- Pipeline ----
FIELD_OPPORTUNITY_STAGE = "opportunity_stage"
FIELD_OPPORTUNITY_ID = "opportunity_id"
FIELD_TATTOO_BOOKED = "tattoo_booked"
FIELD_TATTOO_COMPLETED = "tattoo_completed"
FIELD_COLD_NURTURE_LOST = "cold_nurture_lost"

# ---- Bookkeeping ----
FIELD_LAST_SEEN_SNAPSHOT = "last_seen_fields_snapshot"
FIELD_AI_PHASE = "ai_phase"

# Fields cleared when a hold ends (release, confirmation, or cancellation)
HOLD_FIELDS = (
    FIELD_HOLD_APPOINTMENT_ID,
    FIELD_HOLD_CREATED_AT,
    FIELD_HOLD_LAST_ACTIVITY_AT,
    FIELD_HOLD_SLOT,
)

# Appointment statuses understood by the calendar
APPOINTMENT_STATUS_NEW = "new"
APPOINTMENT_STATUS_CONFIRMED = "confirmed"
APPOINTMENT_STATUS_CANCELLED = "cancelled"

# Consultation types
CONSULTATION_MESSAGE = "message"
CONSULTATION_APPOINTMENT = "appointment"
