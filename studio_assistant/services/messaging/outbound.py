"""
Outbound sender - multi-bubble replies with per-contact generation counters.

Every inbound message bumps the contact's generation. A bubble sequence captures
the generation it was started under and re-checks it before each bubble and
after each inter-bubble delay; once a newer generation exists the remaining
bubbles are dropped.
"""

import asyncio
import itertools
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass

from studio_assistant.constants.event_types import EVENT_SEND_FAILURE, EVENT_SEND_SUPERSEDED
from studio_assistant.core.config import settings
from studio_assistant.services import system_event_service
from studio_assistant.services.integrations import crm_client

logger = logging.getLogger(__name__)

DM_TAG_MARKERS = ("INSTAGRAM", "FACEBOOK", "DM")


class GenerationTracker:
    """
    Per-contact generation numbers (in-process).

    Numbers come from one process-wide counter, so a contact's generation only
    ever grows. Only the most recently active contacts are remembered; an
    evicted contact restarts above every number handed out before.
    """

    def __init__(self, max_contacts: int = 10_000) -> None:
        self.max_contacts = max_contacts
        self._generations: OrderedDict[str, int] = OrderedDict()
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._generations)

    def bump(self, contact_id: str) -> int:
        with self._lock:
            generation = next(self._counter)
            self._generations[contact_id] = generation
            self._generations.move_to_end(contact_id)
            while len(self._generations) > self.max_contacts:
                self._generations.popitem(last=False)
            return generation

    def current(self, contact_id: str) -> int:
        with self._lock:
            return self._generations.get(contact_id, 0)

    def is_current(self, contact_id: str, generation: int | None) -> bool:
        """A sequence without a generation is never superseded."""
        if generation is None:
            return True
        return self.current(contact_id) == generation

    def reset(self) -> None:
        with self._lock:
            self._generations.clear()
            self._counter = itertools.count(1)


generation_tracker = GenerationTracker()


@dataclass
class SendResult:
    sent: int = 0
    aborted: bool = False
    failed: bool = False


def _channel_type(medium: str, tags: list[str], is_dm: bool, phone: str | None) -> str:
    if is_dm:
        if medium in ("instagram", "ig") or any("INSTAGRAM" in tag for tag in tags):
            return "instagram"
        if medium in ("facebook", "fb") or any("FACEBOOK" in tag for tag in tags):
            return "facebook"
        return "dm"
    if medium == "whatsapp" or any("WHATSAPP" in tag for tag in tags):
        return "whatsapp"
    if phone:
        return "sms"
    return "unknown"


def build_channel_context(
    contact: dict | None, conversation_id: str | None = None, medium: str | None = None
) -> dict:
    """
    Channel hints for sending: DM (from the medium or INSTAGRAM/FACEBOOK/DM tags)
    or SMS by phone. channel_type feeds the pipeline entry stage.
    """
    contact = contact or {}
    tags = [tag.upper() for tag in contact.get("tags") or [] if isinstance(tag, str)]
    medium = (medium or "").lower()
    phone = contact.get("phone") or contact.get("phoneNumber")
    is_dm = medium in ("instagram", "ig", "facebook", "fb") or any(
        marker in tag for tag in tags for marker in DM_TAG_MARKERS
    )
    return {
        "is_dm": is_dm,
        "has_phone": bool(phone),
        "phone": phone,
        "conversation_id": conversation_id,
        "channel_type": _channel_type(medium, tags, is_dm, phone),
    }


async def send_single(contact_id: str, body: str, channel_context: dict | None = None) -> bool:
    """
    Send one standalone notice (hold warning/release, payment confirmation).

    Returns:
        True if the CRM accepted the message
    """
    try:
        await crm_client.send_conversation_message(contact_id, body, channel_context)
        return True
    except Exception as e:
        logger.error(f"Failed to send message to {contact_id}: {e}", exc_info=True)
        system_event_service.error(EVENT_SEND_FAILURE, contact_id=contact_id, exc=e)
        return False


async def send_bubbles(
    contact_id: str,
    bubbles: list[str],
    channel_context: dict | None = None,
    generation: int | None = None,
    delay_seconds: float | None = None,
    tracker: GenerationTracker | None = None,
) -> SendResult:
    """
    Send a reply as a sequence of bubbles, aborting if superseded.

    Args:
        contact_id: CRM contact id
        bubbles: Message parts, sent in order
        channel_context: Channel hints for the CRM
        generation: Generation this sequence belongs to (None = never superseded)
        delay_seconds: Pause between bubbles (default: settings.bubble_delay_seconds)

    Returns:
        SendResult with the number of bubbles sent and whether the sequence was aborted
    """
    tracker = tracker or generation_tracker
    delay = settings.bubble_delay_seconds if delay_seconds is None else delay_seconds
    result = SendResult()
    parts = [b for b in bubbles if b and b.strip()]

    for index, bubble in enumerate(parts):
        if index > 0 and delay > 0:
            await asyncio.sleep(delay)
            if not tracker.is_current(contact_id, generation):
                result.aborted = True
                break
        if not tracker.is_current(contact_id, generation):
            result.aborted = True
            break
        try:
            await crm_client.send_conversation_message(contact_id, bubble, channel_context)
        except Exception as e:
            logger.error(f"Failed to send bubble {index + 1} to {contact_id}: {e}", exc_info=True)
            system_event_service.error(EVENT_SEND_FAILURE, contact_id=contact_id, exc=e)
            result.failed = True
            break
        result.sent += 1

    if result.aborted:
        logger.info(
            f"Outbound sequence for {contact_id} superseded after {result.sent}/{len(parts)} bubbles "
            f"(generation {generation}, current {tracker.current(contact_id)})"
        )
        system_event_service.info(
            EVENT_SEND_SUPERSEDED,
            contact_id=contact_id,
            payload={"sent": result.sent, "total": len(parts), "generation": generation},
        )
    return result
