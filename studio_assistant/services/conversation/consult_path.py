"""
Consult-path handler - message consult vs. video consult with a translator.

Three choices: "message", "translator" (video + interpreter) and
"translator_question" (the lead asks why a translator is needed; answered
before any choice is recorded). A locked consultation type only changes on
explicit override language.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from studio_assistant.constants import fields as F
from studio_assistant.constants import phases as P
from studio_assistant.services.integrations import crm_client
from studio_assistant.services.messaging.message_composer import render_message
from studio_assistant.services.messaging.outbound import send_single
from studio_assistant.services.pipeline import stage_resolver

logger = logging.getLogger(__name__)

PATH_MESSAGE = "message"
PATH_TRANSLATOR = "translator"
PATH_TRANSLATOR_QUESTION = "translator_question"

_WHY_TRANSLATOR = (re.compile(r"\bwhy\b.*\btranslat"), re.compile(r"\btranslat\w*\b.*\bwhy\b"))
_MESSAGE_WORDS = re.compile(r"\b(messages?|chat|dm|text|mensajes?)\b")
_NOT_MESSAGE = (re.compile(r"instead of\s+(messag|text)"), re.compile(r"\bnot\b.*\b(messag|text)"))
_MESSAGE_PHRASES = (
    re.compile(r"consult.*\b(here|messages?|chat)\b"),
    re.compile(r"\bpref(er)?\s+(messages?|chat|text)"),
)
_TRANSLATOR_WORDS = (
    re.compile(r"\btranslat(or|e)\b"),
    re.compile(r"\bvideo\b"),
    re.compile(r"\bzoom\b"),
    re.compile(r"\blive\b"),
    re.compile(r"\bcall\b"),
    re.compile(r"consult.*\b(video|zoom|translator)\b"),
)
_NOT_TRANSLATOR = re.compile(r"\b(instead of|not) (a |the )?(video|call|zoom|translator)")
_OVERRIDE = re.compile(r"\b(actually|rather|instead|prefer)\b")


@dataclass
class PathChoiceResult:
    choice: str
    field_updates: dict[str, Any] = field(default_factory=dict)
    response_body: str | None = None
    sent: bool = False


def detect_path_choice(message_text: str | None) -> str | None:
    """
    Detect which consult path the message picks, if any.

    A "why a translator?" question wins over both choices; a message that
    mentions both paths counts as the translator path.
    """
    if not message_text:
        return None
    text = str(message_text).lower()

    if any(p.search(text) for p in _WHY_TRANSLATOR):
        return PATH_TRANSLATOR_QUESTION

    picks_message = (
        bool(_MESSAGE_WORDS.search(text)) and not any(p.search(text) for p in _NOT_MESSAGE)
    ) or any(p.search(text) for p in _MESSAGE_PHRASES)
    picks_translator = any(p.search(text) for p in _TRANSLATOR_WORDS) and not (
        picks_message and _NOT_TRANSLATOR.search(text)
    )

    if picks_translator:
        return PATH_TRANSLATOR
    if picks_message:
        return PATH_MESSAGE
    return None


def has_override_language(message_text: str | None) -> bool:
    return bool(_OVERRIDE.search(str(message_text or "").lower()))


def _updates_for(choice: str) -> dict[str, Any]:
    if choice == PATH_MESSAGE:
        return {
            F.FIELD_CONSULTATION_TYPE: F.CONSULTATION_MESSAGE,
            F.FIELD_CONSULTATION_TYPE_LOCKED: True,
            F.FIELD_TRANSLATOR_NEEDED: False,
        }
    if choice == PATH_TRANSLATOR:
        return {
            F.FIELD_CONSULTATION_TYPE: F.CONSULTATION_APPOINTMENT,
            F.FIELD_CONSULTATION_TYPE_LOCKED: True,
            F.FIELD_TRANSLATOR_NEEDED: True,
            F.FIELD_LANGUAGE_BARRIER_EXPLAINED: True,
            F.FIELD_TRANSLATOR_EXPLAINED: True,
        }
    return {F.FIELD_LANGUAGE_BARRIER_EXPLAINED: True}


_REPLY_KEYS = {
    PATH_MESSAGE: "consult_message_choice",
    PATH_TRANSLATOR: "consult_translator_choice",
    PATH_TRANSLATOR_QUESTION: "consult_translator_question",
}


async def apply_path_choice(
    contact_id: str,
    message_text: str | None,
    existing_choice: str | None = None,
    is_locked: bool = False,
    apply_only: bool = False,
    channel_context: dict | None = None,
) -> PathChoiceResult | None:
    """
    Record the lead's consult-path choice.

    Args:
        contact_id: CRM contact id
        message_text: Inbound message
        existing_choice: Current consultation_type
        is_locked: consultation_type_locked
        apply_only: Update fields (and pipeline) without sending a reply; used when
            another handler answers this turn
        channel_context: Channel hints for the reply

    Returns:
        PathChoiceResult, or None when nothing was detected or a locked type was
        not explicitly overridden
    """
    choice = detect_path_choice(message_text)
    if choice is None:
        return None

    if choice != PATH_TRANSLATOR_QUESTION and is_locked and not has_override_language(message_text):
        logger.info(
            f"Consult path {choice} ignored for {contact_id}: type locked to {existing_choice} without override"
        )
        return None

    updates = _updates_for(choice)
    logger.info(f"Consult path {choice} for {contact_id} (was {existing_choice}, apply_only={apply_only})")
    try:
        await crm_client.update_system_fields(contact_id, updates)
    except Exception as e:
        logger.error(f"Failed to persist consult path {choice} for {contact_id}: {e}", exc_info=True)

    if choice != PATH_TRANSLATOR_QUESTION:
        await stage_resolver.sync_stage_from_contact(
            contact_id, ai_phase=P.PHASE_CONSULT_PATH, field_overrides=updates
        )

    result = PathChoiceResult(choice=choice, field_updates=updates)
    if apply_only:
        return result

    result.response_body = render_message(_REPLY_KEYS[choice], contact_id=contact_id)
    result.sent = await send_single(contact_id, result.response_body, channel_context)
    return result
