"""
Generative responder client.

The responder is an external service that receives the turn context (canonical
state, phase, intents, objection guidance) and returns
{"bubbles": [...], "meta": {...}, "field_updates": {...}}.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from studio_assistant.core.config import settings
from studio_assistant.services.integrations.http_client import get_httpx_timeout

logger = logging.getLogger(__name__)


class ResponderError(Exception):
    """Raised when the responder is unavailable or returns an unusable reply."""


@dataclass
class ResponderReply:
    bubbles: list[str]
    meta: dict[str, Any] = field(default_factory=dict)
    field_updates: dict[str, Any] = field(default_factory=dict)


def parse_reply(data: Any) -> ResponderReply:
    """
    Validate a raw responder payload.

    Raises:
        ResponderError: If there are no usable bubbles
    """
    if not isinstance(data, dict):
        raise ResponderError("Responder reply is not an object")
    bubbles = [str(b).strip() for b in data.get("bubbles") or [] if b and str(b).strip()]
    if not bubbles:
        raise ResponderError("Responder reply has no bubbles")
    meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
    field_updates = data.get("field_updates") if isinstance(data.get("field_updates"), dict) else {}
    return ResponderReply(bubbles=bubbles, meta=meta, field_updates=field_updates)


async def generate_reply(context: dict[str, Any]) -> ResponderReply:
    """
    Ask the responder for the next reply.

    Raises:
        ResponderError: If no responder is configured or the call fails
    """
    if not settings.responder_url:
        raise ResponderError("Responder URL not configured")

    headers = {"Content-Type": "application/json"}
    if settings.responder_api_key:
        headers["Authorization"] = f"Bearer {settings.responder_api_key}"

    try:
        async with httpx.AsyncClient(timeout=get_httpx_timeout()) as client:
            response = await client.post(settings.responder_url, json=context, headers=headers)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Responder call failed: {e}")
        raise ResponderError(str(e)) from e

    return parse_reply(data)
