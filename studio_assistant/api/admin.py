import logging

from fastapi import APIRouter, HTTPException, Security

from studio_assistant.api.auth import get_admin_auth
from studio_assistant.jobs.sweep_holds import run_sweep
from studio_assistant.services.integrations import crm_client
from studio_assistant.services.pipeline.stage_resolver import StageContext, determine_stage
from studio_assistant.services.state.canonical_state import build_canonical_state, get_custom_fields
from studio_assistant.services.state.phase import derive_phase
from studio_assistant.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sweep-holds")
async def sweep_holds(
    _auth: bool = Security(get_admin_auth),
):
    """
    Warn and release idle appointment holds.

    This endpoint can be called by:
    - Cron jobs (Render Cron, external cron services)
    - Manual admin action

    Returns:
        Summary of sweep operation
    """
    started_at = utc_now()
    results = await run_sweep(now=started_at)
    return {"success": True, "summary": results, "swept_at": started_at.isoformat()}


@router.get("/contacts/{contact_id}/state")
async def get_contact_state(
    contact_id: str,
    _auth: bool = Security(get_admin_auth),
):
    """Canonical state, phase and derived pipeline stage of a contact (debugging)."""
    contact = await crm_client.get_contact(contact_id)
    if not contact:
        raise HTTPException(status_code=404, detail="Contact not found")

    state = build_canonical_state(contact)
    phase = derive_phase(state)
    derived_stage = determine_stage(StageContext.from_custom_fields(get_custom_fields(contact), phase))
    return {
        "contact_id": contact_id,
        "phase": phase,
        "stage": state.opportunity_stage,
        "derived_stage": derived_stage,
        "has_active_hold": state.has_active_hold,
        "state": state.to_dict(),
    }
