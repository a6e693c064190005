"""
Conversation phase constants (derived from canonical state, never stored as truth).
"""

PHASE_INTAKE = "intake"
PHASE_DISCOVERY = "discovery"
PHASE_QUALIFICATION = "qualification"
PHASE_CONSULT_PATH = "consult_path"
PHASE_SCHEDULING = "scheduling"
PHASE_DEPOSIT_PENDING = "deposit_pending"
PHASE_QUALIFIED = "qualified"
PHASE_BOOKED = "booked"

# Phases where a bare "yes"/"ok" counts as booking intent
LATE_PHASES = frozenset(
    {
        PHASE_SCHEDULING,
        PHASE_DEPOSIT_PENDING,
        PHASE_QUALIFIED,
        PHASE_BOOKED,
    }
)
