"""
Intent classifier - pure, case-insensitive pattern matching over one inbound message.

Intents are not mutually exclusive; the hard-skip router owns precedence.
No IO: the collaborators are the in-memory objection catalogue and the slot
parser's explicit-pick rules.
"""

import logging
import re
from dataclasses import asdict, dataclass, fields

from studio_assistant.core.config import settings
from studio_assistant.services.intents.objection_library import detect_objection
from studio_assistant.services.scheduling.slot_parsing import explicit_slot_number
from studio_assistant.services.state.phase import is_late_phase

logger = logging.getLogger(__name__)

BOOKING_SIGNAL_STRONG = "strong"
BOOKING_SIGNAL_WEAK = "weak"

RESCHEDULE_PATTERNS = (
    re.compile(r"\bresched"),
    re.compile(r"\banother day\b"),
    re.compile(r"\bdifferent (day|time|date)\b"),
    # "move" only counts with a booking object; "move the design higher" is placement talk
    re.compile(r"\bmove (my|the|our) (appointment|appt|consult(ation)?|booking|session|time|date|day)\b"),
    re.compile(
        r"\bmove it (to|till|until) (another|a different|next|later|earlier|tomorrow|"
        r"monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b"
    ),
    re.compile(r"\bpush (it|my (appointment|consult)) back\b"),
    re.compile(r"\bchange (the )?(time|date)\b"),
)

CANCEL_PATTERNS = (
    re.compile(r"\bcancel\b"),
    re.compile(r"\bcan'?t make it\b"),
    re.compile(r"\bcan’t make it\b"),
)

SCHEDULING_PATTERNS = (
    re.compile(r"\bwhat (times?|days?)\b"),
    re.compile(r"\bavailability\b"),
    re.compile(r"\bavailable\b"),
    re.compile(r"\bopenings?\b"),
    re.compile(r"\bslots?\b"),
    re.compile(r"\bschedul(e|ing)\b"),
    re.compile(r"\bwhen can i (come|book|schedule)\b"),
    re.compile(r"\bwhat day works\b"),
    re.compile(r"\bwhich day\b"),
    re.compile(r"\bthis week\b"),
    re.compile(r"\bnext week\b"),
    re.compile(r"\btoday\b"),
    re.compile(r"\btomorrow\b"),
)

# Explicit references to an offered slot fire with or without offered slots on record
EXPLICIT_SELECTION_PATTERNS = (
    re.compile(r"\b(option|slot|choice|number)\s*#?\s*[1-9]\b"),
    re.compile(r"#\s?[1-9]\b"),
    re.compile(r"\b(first|second|third|fourth|last)\s+one\b"),
)

# Descriptive references only count once concrete slots were offered
DESCRIPTIVE_SELECTION_PATTERNS = (
    re.compile(r"^\s*[1-9]\s*[.!)]?\s*$"),
    re.compile(r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b"),
    re.compile(
        r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\s+\d{1,2}(st|nd|rd|th)?\b"
    ),
    re.compile(r"\b\d{1,2}(:\d{2})?\s*(am|pm)\b"),
)

DEPOSIT_PATTERNS = (
    re.compile(r"\bdeposit\b"),
    re.compile(r"\bpay(ment)? link\b"),
    re.compile(r"\bpay now\b"),
    re.compile(r"\bready to pay\b"),
    re.compile(r"\bsend (me )?the link\b"),
)

CONSULT_PATH_PATTERNS = (
    re.compile(r"\bvideo\b"),
    re.compile(r"\bzoom\b"),
    re.compile(r"\btranslat(or|e)\b"),
    re.compile(r"\bcall\b"),
    re.compile(r"\bphone\b"),
    re.compile(r"\bin[-\s]?person\b"),
    re.compile(r"\bstudio\b"),
    re.compile(r"\bcome in\b"),
    re.compile(r"\bmessages?\b"),
    re.compile(r"\bchat\b"),
    re.compile(r"\bdm\b"),
)

CONSULT_QUESTION_PATTERN = re.compile(r"\bconsult(ation)?s?\b")

AFFIRMATIVE_PATTERN = re.compile(
    r"^\s*(yes|yeah|yep|yup|sure|ok|okay|k|sounds good|that works|works for me|perfect|"
    r"let'?s do it|let’s do it|i'?m in|book it|s[ií]|claro|dale)\s*[.!👍🙌]*\s*$"
)

PROCESS_OR_PRICE_PATTERNS = (
    re.compile(r"\bhow much\b"),
    re.compile(r"\bprice\b"),
    re.compile(r"\bcost\b"),
    re.compile(r"\brates?\b"),
    re.compile(r"\bhow does (it|this) work\b"),
    re.compile(r"\bwhat('s| is) the process\b"),
    re.compile(r"\bprocess\b"),
)


@dataclass(frozen=True)
class IntentContext:
    """Lightweight per-turn context; everything defaults to the cautious value."""

    has_core_info: bool = False
    phase: str | None = None
    has_offered_slots: bool = False
    translator_pending: bool = False

    @classmethod
    def from_state(cls, state, phase: str | None) -> "IntentContext":
        return cls(
            has_core_info=state.has_core_info,
            phase=phase,
            has_offered_slots=state.has_offered_slots,
            translator_pending=state.translator_needed and not state.translator_confirmed,
        )


@dataclass
class Intents:
    reschedule_intent: bool = False
    cancel_intent: bool = False
    scheduling_intent: bool = False
    slot_selection_intent: bool = False
    deposit_intent: bool = False
    consult_path_choice_intent: bool = False
    consult_question_intent: bool = False
    translator_affirm_intent: bool = False
    process_or_price_question_intent: bool = False
    objection_intent: bool = False
    booking_intent: bool = False
    objection_type: str | None = None
    booking_signal: str | None = None

    def active(self) -> list[str]:
        """Names of the boolean flags that are set."""
        return [f.name for f in fields(self) if getattr(self, f.name) is True]

    def to_dict(self) -> dict:
        return asdict(self)


def _any(patterns, text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def is_affirmative(message_text: str | None) -> bool:
    if not message_text:
        return False
    return bool(AFFIRMATIVE_PATTERN.match(str(message_text).lower()))


def looks_like_slot_selection(message_text: str | None, has_offered_slots: bool = False) -> bool:
    """
    Heuristic slot-selection check.

    Explicit references ("option 2", "slot 2", "#2", "the second one") always
    count. Once concrete slots were offered, anything the slot parser reads as
    an explicit pick ("2nd", "the last") counts too, as do weekdays, bare
    digits, dates and clock times.
    """
    if not message_text:
        return False
    lower = str(message_text).lower()
    if _any(EXPLICIT_SELECTION_PATTERNS, lower):
        return True
    if not has_offered_slots:
        return False
    if explicit_slot_number(lower, settings.max_offered_slots) is not None:
        return True
    return _any(DESCRIPTIVE_SELECTION_PATTERNS, lower)


def classify(message_text: str | None, context: IntentContext | None = None) -> Intents:
    """
    Classify one inbound message into intent flags.

    Args:
        message_text: Raw message text (None/"" yields all-false intents)
        context: Conversation context gating weak booking signals,
            descriptive slot selection and translator affirmation

    Returns:
        Intents
    """
    intents = Intents()
    if not message_text or not isinstance(message_text, str):
        return intents
    context = context or IntentContext()
    lower = message_text.lower().strip()
    if not lower:
        return intents

    objection = detect_objection(message_text)
    if objection is not None:
        intents.objection_intent = True
        intents.objection_type = objection.id

    intents.reschedule_intent = _any(RESCHEDULE_PATTERNS, lower)
    intents.cancel_intent = _any(CANCEL_PATTERNS, lower)
    intents.scheduling_intent = _any(SCHEDULING_PATTERNS, lower)
    intents.slot_selection_intent = looks_like_slot_selection(lower, context.has_offered_slots)
    intents.deposit_intent = _any(DEPOSIT_PATTERNS, lower)
    intents.consult_path_choice_intent = _any(CONSULT_PATH_PATTERNS, lower)
    intents.consult_question_intent = "?" in lower and (
        bool(CONSULT_QUESTION_PATTERN.search(lower)) or intents.consult_path_choice_intent
    )
    intents.process_or_price_question_intent = _any(PROCESS_OR_PRICE_PATTERNS, lower)

    affirmative = is_affirmative(lower)
    intents.translator_affirm_intent = context.translator_pending and affirmative

    if intents.scheduling_intent:
        intents.booking_signal = BOOKING_SIGNAL_STRONG
        intents.booking_intent = True
    elif affirmative:
        intents.booking_signal = BOOKING_SIGNAL_WEAK
        # A bare "ok" only means "book it" once there is something to book
        intents.booking_intent = not intents.translator_affirm_intent and (
            context.has_core_info or is_late_phase(context.phase)
        )

    if intents.active():
        logger.debug(f"Intents detected: {intents.active()}")
    return intents
