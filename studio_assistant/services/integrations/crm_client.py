"""
CRM client - contact reads/writes, conversation messages, opportunities.

The contact's custom-field bag is the system of record. Writes are
fire-and-forget from the caller's view: there is no read-after-write guarantee,
so callers merge their own updates in memory instead of re-reading.
"""

import logging
import os
from typing import Any

import httpx

from studio_assistant.core.config import settings
from studio_assistant.services.integrations.http_client import create_httpx_client

logger = logging.getLogger(__name__)


class CrmError(Exception):
    """Raised when a CRM request fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


async def crm_request(
    method: str,
    path: str,
    *,
    json: dict | None = None,
    params: dict | None = None,
    api_version: str | None = None,
) -> dict:
    try:
        async with create_httpx_client(api_version) as client:
            response = await client.request(method, path, json=json, params=params)
            response.raise_for_status()
            return response.json() if response.content else {}
    except httpx.HTTPStatusError as e:
        logger.error(f"CRM {method} {path} failed: {e.response.status_code} {e.response.text[:200]}")
        raise CrmError(f"CRM {method} {path} failed", status_code=e.response.status_code) from e
    except httpx.HTTPError as e:
        logger.error(f"CRM {method} {path} failed: {e}")
        raise CrmError(f"CRM {method} {path} failed: {e}") from e


def _outbound_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if value is None:
        return ""
    return value


async def get_contact(contact_id: str | None) -> dict | None:
    """
    Fetch a contact. Returns None when the id is missing or the request fails.
    """
    if not contact_id:
        return None
    try:
        data = await crm_request("GET", f"/contacts/{contact_id}")
    except CrmError:
        return None
    return data.get("contact") or data


async def update_system_fields(contact_id: str | None, fields: dict[str, Any]) -> dict | None:
    """
    Write custom fields on a contact.

    Booleans are stored as "Yes"/"No" and None clears the field.

    Raises:
        CrmError: If the write fails
    """
    if not contact_id:
        logger.warning("update_system_fields called without contact_id")
        return None
    custom_fields = [
        {"key": key, "field_value": _outbound_value(value)} for key, value in fields.items()
    ]
    if not custom_fields:
        return None
    return await crm_request("PUT", f"/contacts/{contact_id}", json={"customFields": custom_fields})


def _message_type(channel_context: dict | None) -> str:
    context = channel_context or {}
    if context.get("is_dm"):
        return context.get("dm_type") or "IG"
    return "SMS"


async def send_conversation_message(
    contact_id: str,
    body: str,
    channel_context: dict | None = None,
    dry_run: bool | None = None,
) -> dict | None:
    """
    Send one outbound message on the contact's conversation.

    Args:
        contact_id: CRM contact id
        body: Message text
        channel_context: {"is_dm", "has_phone", "phone", "conversation_id"}
        dry_run: If True, only log the message (defaults to settings.crm_dry_run)

    Returns:
        dict with status and message_id (or None for an empty body)
    """
    if not body or not body.strip():
        logger.warning("send_conversation_message called with empty body, skipping")
        return None
    if dry_run is None:
        dry_run = settings.crm_dry_run

    # Never send for real from the test suite
    if os.environ.get("PYTEST_CURRENT_TEST"):
        dry_run = True

    message_type = _message_type(channel_context)
    if dry_run:
        logger.info(f"[DRY-RUN] Would send {message_type} message to {contact_id}: {body}")
        return {"status": "dry_run", "message_id": None, "contact_id": contact_id, "message": body}

    payload = {"type": message_type, "contactId": contact_id, "message": body}
    conversation_id = (channel_context or {}).get("conversation_id")
    if conversation_id:
        payload["conversationId"] = conversation_id
    result = await crm_request("POST", "/conversations/messages", json=payload)
    return {"status": "sent", "message_id": result.get("messageId"), "contact_id": contact_id}


ACTIVE_HOLDS_PAGE_SIZE = 100
ACTIVE_HOLDS_MAX_PAGES = 50


async def list_active_holds(page_size: int = ACTIVE_HOLDS_PAGE_SIZE) -> list[str]:
    """
    Contact ids that currently carry a hold appointment id.

    Uses the contact search endpoint filtered on the hold field and follows
    the searchAfter cursor of the last contact until a short page comes back.
    """
    payload: dict[str, Any] = {
        "locationId": settings.crm_location_id,
        "pageLimit": page_size,
        "filters": [{"field": "customFields.hold_appointment_id", "operator": "exists"}],
    }
    contact_ids: list[str] = []
    for _ in range(ACTIVE_HOLDS_MAX_PAGES):
        data = await crm_request("POST", "/contacts/search", json=payload)
        contacts = data.get("contacts") or []
        for contact in contacts:
            if contact.get("id") and contact["id"] not in contact_ids:
                contact_ids.append(contact["id"])
        cursor = contacts[-1].get("searchAfter") if contacts else None
        if len(contacts) < page_size or not cursor:
            return contact_ids
        payload["searchAfter"] = cursor
    logger.warning(f"Active hold search stopped after {ACTIVE_HOLDS_MAX_PAGES} pages ({len(contact_ids)} contacts)")
    return contact_ids


async def search_opportunities(contact_id: str) -> list[dict]:
    data = await crm_request(
        "GET",
        "/opportunities/search",
        params={"location_id": settings.crm_location_id, "contact_id": contact_id},
    )
    return data.get("opportunities") or []


async def upsert_opportunity(
    contact_id: str,
    pipeline_stage_id: str,
    *,
    name: str | None = None,
    monetary_value: int | float = 0,
    status: str = "open",
) -> dict:
    """Create or move the contact's opportunity in the studio pipeline."""
    payload = {
        "locationId": settings.crm_location_id,
        "pipelineId": settings.crm_pipeline_id,
        "pipelineStageId": pipeline_stage_id,
        "contactId": contact_id,
        "name": name or "Tattoo Opportunity",
        "status": status,
        "monetaryValue": monetary_value,
        "source": "Studio Assistant",
    }
    data = await crm_request("POST", "/opportunities/upsert", json=payload)
    return data.get("opportunity") or data


async def update_opportunity_stage(opportunity_id: str, pipeline_stage_id: str) -> dict:
    data = await crm_request(
        "PUT",
        f"/opportunities/{opportunity_id}",
        json={"pipelineId": settings.crm_pipeline_id, "pipelineStageId": pipeline_stage_id},
    )
    return data.get("opportunity") or data
