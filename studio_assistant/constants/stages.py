"""
Pipeline stage constants - keys, CRM stage ids, display names and rank.

Rank drives the monotonic-transition rule: a stage may only move to a stage of
equal or higher rank unless regression is explicitly allowed.
"""

STAGE_INTAKE = "INTAKE"
STAGE_DISCOVERY = "DISCOVERY"
STAGE_CONSULT_MESSAGE = "CONSULT_MESSAGE"
STAGE_CONSULT_APPOINTMENT = "CONSULT_APPOINTMENT"
STAGE_DEPOSIT_PENDING = "DEPOSIT_PENDING"
STAGE_QUALIFIED = "QUALIFIED"
STAGE_TATTOO_BOOKED = "TATTOO_BOOKED"
STAGE_COMPLETED = "COMPLETED"
STAGE_COLD_NURTURE_LOST = "COLD_NURTURE_LOST"

STAGE_RANK = {
    STAGE_INTAKE: 0,
    STAGE_DISCOVERY: 1,
    STAGE_CONSULT_MESSAGE: 2,
    STAGE_CONSULT_APPOINTMENT: 2,
    STAGE_DEPOSIT_PENDING: 3,
    STAGE_QUALIFIED: 4,
    STAGE_TATTOO_BOOKED: 5,
    STAGE_COMPLETED: 6,
    # Absorbing: nothing ranks above it, so leaving requires allow_regression
    STAGE_COLD_NURTURE_LOST: 7,
}

STAGE_CONFIG = {
    STAGE_INTAKE: {
        "id": "98249178-522e-4a85-9e3f-ccb01df42b18",
        "name": "Intake",
        "monetary_value": 0,
    },
    STAGE_DISCOVERY: {
        "id": "7303c015-f060-46b6-b944-82204763ac87",
        "name": "Discovery",
        "monetary_value": 0,
    },
    STAGE_CONSULT_MESSAGE: {
        "id": "09587a76-13ae-41b3-bd57-81da11f1c56c",
        "name": "Consult - Message",
        "monetary_value": 100,
    },
    STAGE_CONSULT_APPOINTMENT: {
        "id": "d30d3a30-3a78-4123-9387-8db3d6dd8a20",
        "name": "Consult - Appointment",
        "monetary_value": 100,
    },
    STAGE_DEPOSIT_PENDING: {
        "id": "04d73009-51fe-4fd3-8207-06673b2aab78",
        "name": "Deposit Pending",
        "monetary_value": 100,
    },
    STAGE_QUALIFIED: {
        "id": "a4415a16-91b8-43cc-b6be-9766d557596e",
        "name": "Qualified (Deposit Paid)",
        "monetary_value": 100,
    },
    STAGE_TATTOO_BOOKED: {
        "id": "6e53fc11-14e1-4eb7-b8c1-56e8d1ec4982",
        "name": "Tattoo Booked",
        "monetary_value": 600,
    },
    STAGE_COMPLETED: {
        "id": "27f7e75c-4992-4b16-ba98-455b95f9e479",
        "name": "Completed",
        "monetary_value": 0,
    },
    STAGE_COLD_NURTURE_LOST: {
        "id": "d08a4842-ba65-4213-b8c7-92e94295fc88",
        "name": "Cold / Nurture / Lost",
        "monetary_value": 0,
    },
}

# Channels where the lead reached out first start further down the funnel
DIRECT_CHANNELS = frozenset({"sms", "dm", "facebook", "instagram", "whatsapp", "messenger"})


def get_stage_id(stage_key: str | None) -> str | None:
    """Return the CRM pipeline stage id for a stage key, or None if unknown."""
    if not stage_key:
        return None
    config = STAGE_CONFIG.get(stage_key)
    return config["id"] if config else None


def get_stage_key_from_id(stage_id: str | None) -> str | None:
    """Reverse lookup: CRM pipeline stage id -> stage key."""
    if not stage_id:
        return None
    for key, config in STAGE_CONFIG.items():
        if config["id"] == stage_id:
            return key
    return None
