"""
Pipeline stage resolver - derives the opportunity stage from contact fields and moves
the CRM opportunity forward monotonically.

determine_stage() is pure. transition_to_stage() refuses to lower the stage rank
unless allow_regression is passed, and moving to the stage already held is a
no-op (no CRM write).
"""

import logging
from dataclasses import dataclass
from typing import Any

from studio_assistant.constants import fields as F
from studio_assistant.constants import phases as P
from studio_assistant.constants import stages as S
from studio_assistant.constants.event_types import EVENT_STAGE_TRANSITION, EVENT_STAGE_TRANSITION_FAILURE
from studio_assistant.services import system_event_service
from studio_assistant.services.integrations import crm_client
from studio_assistant.services.state.canonical_state import bool_val, get_custom_fields

logger = logging.getLogger(__name__)

REASON_STAGE_REGRESSION = "stage_regression"
REASON_ALREADY_IN_STAGE = "already_in_stage"

# Phases that mean the lead is talking to us but hasn't committed to anything yet
DISCOVERY_PHASES = frozenset(
    {P.PHASE_DISCOVERY, P.PHASE_QUALIFICATION, P.PHASE_CONSULT_PATH, P.PHASE_SCHEDULING}
)


@dataclass(frozen=True)
class StageContext:
    ai_phase: str | None = None
    deposit_link_sent: bool = False
    deposit_paid: bool = False
    consultation_type: str | None = None
    tattoo_booked: bool = False
    tattoo_completed: bool = False
    lost: bool = False

    @classmethod
    def from_custom_fields(cls, cf: dict[str, Any], ai_phase: str | None = None) -> "StageContext":
        consultation_type = cf.get(F.FIELD_CONSULTATION_TYPE)
        return cls(
            ai_phase=ai_phase,
            deposit_link_sent=bool_val(cf.get(F.FIELD_DEPOSIT_LINK_SENT)),
            deposit_paid=bool_val(cf.get(F.FIELD_DEPOSIT_PAID)),
            consultation_type=str(consultation_type).strip() if consultation_type else None,
            tattoo_booked=bool_val(cf.get(F.FIELD_TATTOO_BOOKED)),
            tattoo_completed=bool_val(cf.get(F.FIELD_TATTOO_COMPLETED)),
            lost=bool_val(cf.get(F.FIELD_COLD_NURTURE_LOST)),
        )


def determine_stage(context: StageContext) -> str:
    """
    Stage for a contact, by fixed priority:
    completed > lost > booked > consult mode chosen > deposit paid
    > deposit link sent > phase heuristic > intake.
    """
    if context.tattoo_completed:
        return S.STAGE_COMPLETED
    if context.lost:
        return S.STAGE_COLD_NURTURE_LOST
    if context.tattoo_booked:
        return S.STAGE_TATTOO_BOOKED
    if context.consultation_type == F.CONSULTATION_MESSAGE:
        return S.STAGE_CONSULT_MESSAGE
    if context.consultation_type in (F.CONSULTATION_APPOINTMENT, "online", "in_person"):
        return S.STAGE_CONSULT_APPOINTMENT
    if context.deposit_paid:
        return S.STAGE_QUALIFIED
    if context.deposit_link_sent:
        return S.STAGE_DEPOSIT_PENDING
    if context.ai_phase in DISCOVERY_PHASES:
        return S.STAGE_DISCOVERY
    return S.STAGE_INTAKE


def can_advance(current: str | None, target: str, *, allow_regression: bool = False) -> bool:
    """True when moving current -> target keeps the rank non-decreasing (or regression is allowed)."""
    if not current or allow_regression:
        return True
    current_rank = S.STAGE_RANK.get(current)
    target_rank = S.STAGE_RANK.get(target)
    if current_rank is None or target_rank is None:
        return True
    return target_rank >= current_rank


def _opportunity_name(contact: dict | None) -> str:
    first_name = (contact or {}).get("firstName") or (contact or {}).get("first_name")
    return f"{first_name} Tattoo" if first_name else "Tattoo Opportunity"


async def _current_opportunity(contact_id: str, contact: dict | None) -> tuple[str | None, str | None]:
    """(opportunity_id, stage key) from contact fields, else from an opportunity search."""
    cf = get_custom_fields(contact)
    opportunity_id = cf.get(F.FIELD_OPPORTUNITY_ID) or None
    current_stage = cf.get(F.FIELD_OPPORTUNITY_STAGE) or None
    if opportunity_id:
        return opportunity_id, current_stage

    try:
        opportunities = await crm_client.search_opportunities(contact_id)
    except Exception as e:
        logger.warning(f"Opportunity search failed for {contact_id}, will create one: {e}")
        return None, current_stage

    if opportunities:
        existing = opportunities[0]
        opportunity_id = existing.get("id") or existing.get("_id")
        current_stage = S.get_stage_key_from_id(existing.get("pipelineStageId")) or current_stage
    return opportunity_id, current_stage


async def transition_to_stage(
    contact_id: str,
    stage: str,
    *,
    allow_regression: bool = False,
    contact: dict | None = None,
    monetary_value: float | None = None,
) -> dict[str, Any]:
    """
    Move the contact's opportunity to a stage.

    Args:
        contact_id: CRM contact id
        stage: Target stage key (constants.stages)
        allow_regression: Permit moving to a lower-ranked stage
        contact: Already-loaded contact (skips a CRM read)
        monetary_value: Opportunity value (default: the stage's configured value)

    Returns:
        {"skipped": True, "reason": "stage_regression" | "already_in_stage", ...}
        or {"skipped": False, "opportunity_id": ..., "stage": ...}

    Raises:
        ValueError: Unknown stage key
        CrmError: If both the upsert and the stage-update fallback fail
    """
    stage_id = S.get_stage_id(stage)
    if not stage_id:
        raise ValueError(f"Unknown pipeline stage: {stage}")

    if contact is None:
        contact = await crm_client.get_contact(contact_id)

    opportunity_id, current_stage = await _current_opportunity(contact_id, contact)

    if current_stage == stage:
        return {"skipped": True, "reason": REASON_ALREADY_IN_STAGE, "opportunity_id": opportunity_id, "stage": stage}

    if not can_advance(current_stage, stage, allow_regression=allow_regression):
        logger.info(f"Pipeline transition {current_stage} -> {stage} refused for {contact_id} (regression)")
        return {
            "skipped": True,
            "reason": REASON_STAGE_REGRESSION,
            "opportunity_id": opportunity_id,
            "current_stage": current_stage,
        }

    if monetary_value is None:
        monetary_value = S.STAGE_CONFIG[stage].get("monetary_value", 0)

    try:
        upserted = await crm_client.upsert_opportunity(
            contact_id,
            stage_id,
            name=_opportunity_name(contact),
            monetary_value=monetary_value,
        )
        opportunity_id = upserted.get("id") or upserted.get("_id") or opportunity_id
    except Exception as e:
        if not opportunity_id:
            system_event_service.error(
                EVENT_STAGE_TRANSITION_FAILURE,
                contact_id=contact_id,
                payload={"from": current_stage, "to": stage},
                exc=e,
            )
            raise
        logger.warning(f"Opportunity upsert failed for {contact_id}, updating stage directly: {e}")
        await crm_client.update_opportunity_stage(opportunity_id, stage_id)

    await crm_client.update_system_fields(
        contact_id,
        {F.FIELD_OPPORTUNITY_STAGE: stage, F.FIELD_OPPORTUNITY_ID: opportunity_id},
    )

    logger.info(f"Pipeline: {current_stage or '(none)'} -> {stage} (contact {contact_id})")
    system_event_service.info(
        EVENT_STAGE_TRANSITION,
        contact_id=contact_id,
        payload={"from": current_stage, "to": stage, "opportunity_id": opportunity_id},
    )
    return {"skipped": False, "opportunity_id": opportunity_id, "stage": stage, "previous_stage": current_stage}


async def sync_stage_from_contact(
    contact_id: str,
    ai_phase: str | None = None,
    field_overrides: dict[str, Any] | None = None,
    contact: dict | None = None,
) -> dict[str, Any] | None:
    """
    Recompute the stage from the contact's fields and transition to it.

    field_overrides carries just-written fields the CRM may not return yet.
    Never raises; failures are logged and return None.
    """
    try:
        if contact is None:
            contact = await crm_client.get_contact(contact_id)
        if not contact:
            return None
        cf = {**get_custom_fields(contact), **(field_overrides or {})}
        stage = determine_stage(StageContext.from_custom_fields(cf, ai_phase))
        return await transition_to_stage(contact_id, stage, contact={**contact, "customField": cf})
    except Exception as e:
        logger.error(f"Pipeline sync failed for {contact_id}: {e}", exc_info=True)
        return None


async def sync_pipeline_on_entry(
    contact_id: str, channel_type: str | None, contact: dict | None = None
) -> dict[str, Any] | None:
    """Entry stage: direct-message channels start at DISCOVERY, widgets/forms at INTAKE."""
    if not contact_id:
        return None
    entry_stage = (
        S.STAGE_DISCOVERY if (channel_type or "").lower() in S.DIRECT_CHANNELS else S.STAGE_INTAKE
    )
    try:
        return await transition_to_stage(contact_id, entry_stage, contact=contact)
    except Exception as e:
        logger.error(f"Failed to set entry stage {entry_stage} for {contact_id}: {e}", exc_info=True)
        return None
