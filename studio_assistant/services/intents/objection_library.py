"""
Objection library - pattern-matched catalogue of sales objections with bilingual
response templates.

Catalogue data lives in config/objections.yml and is loaded once. Entries are
read-only; detection is first-match-wins in file order.
"""

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

OBJECTIONS_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "objections.yml"
SUPPORTED_LANGUAGES = ("en", "es")

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_FINANCING = re.compile(r"financ", re.IGNORECASE)
_DEPOSIT = re.compile(r"dep[oó]sit", re.IGNORECASE)


class ObjectionCatalogueError(ValueError):
    """Raised when the objection catalogue file is malformed."""


@dataclass(frozen=True)
class Objection:
    """A single catalogue entry."""

    id: str
    category: str
    trigger_patterns: tuple[re.Pattern, ...]
    belief_to_fix: str
    diagnostic_questions: tuple[str, ...]
    core_reframe: str
    closing_touch: dict[str, str]
    response_templates: dict[str, str]
    financing_hook: str | bool
    soft_close: bool = False

    def matches(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.trigger_patterns)

    def template(self, language: str = "en") -> str:
        lang = language if language in SUPPORTED_LANGUAGES else "en"
        return self.response_templates.get(lang) or self.response_templates["en"]

    def closing(self, language: str = "en") -> str:
        lang = language if language in SUPPORTED_LANGUAGES else "en"
        return self.closing_touch.get(lang) or self.closing_touch["en"]


def _mentions_deposit_financing(text: str) -> bool:
    """True if any single sentence pairs financing with the deposit."""
    return any(
        _FINANCING.search(sentence) and _DEPOSIT.search(sentence)
        for sentence in _SENTENCE_SPLIT.split(text)
    )


def _build_objection(raw: dict[str, Any]) -> Objection:
    objection_id = raw.get("id")
    if not objection_id:
        raise ObjectionCatalogueError("Objection entry without id")

    templates = raw.get("response_templates") or {}
    closing = raw.get("closing_touch") or {}
    missing = [lang for lang in SUPPORTED_LANGUAGES if not templates.get(lang) or not closing.get(lang)]
    if missing:
        raise ObjectionCatalogueError(f"Objection {objection_id} missing locales: {missing}")

    for lang, text in templates.items():
        if _mentions_deposit_financing(text):
            raise ObjectionCatalogueError(
                f"Objection {objection_id} ({lang}) offers financing for the deposit"
            )

    try:
        patterns = tuple(re.compile(p, re.IGNORECASE) for p in raw.get("trigger_patterns") or [])
    except re.error as e:
        raise ObjectionCatalogueError(f"Objection {objection_id} has an invalid pattern: {e}") from e

    return Objection(
        id=objection_id,
        category=raw.get("category", "general"),
        trigger_patterns=patterns,
        belief_to_fix=raw.get("belief_to_fix", ""),
        diagnostic_questions=tuple(raw.get("diagnostic_questions") or ()),
        core_reframe=raw.get("core_reframe", ""),
        closing_touch=dict(closing),
        response_templates=dict(templates),
        financing_hook=raw.get("financing_hook", False),
        soft_close=bool(raw.get("soft_close", False)),
    )


@lru_cache(maxsize=1)
def load_catalogue() -> tuple[tuple[Objection, ...], dict[str, Any]]:
    """
    Load the objection catalogue and global rules from YAML.

    Returns:
        (objections in detection order, global rules)
    """
    with open(OBJECTIONS_PATH, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    objections = tuple(_build_objection(entry) for entry in data.get("objections") or [])
    logger.info(f"Loaded {len(objections)} objections from {OBJECTIONS_PATH}")
    return objections, dict(data.get("global_rules") or {})


def get_objections() -> tuple[Objection, ...]:
    return load_catalogue()[0]


def get_global_rules() -> dict[str, Any]:
    return load_catalogue()[1]


def get_objection_ids() -> list[str]:
    return [objection.id for objection in get_objections()]


def get_objection_by_id(objection_id: str) -> Objection | None:
    for objection in get_objections():
        if objection.id == objection_id:
            return objection
    return None


def detect_objection(message_text: Any) -> Objection | None:
    """
    Return the first catalogue entry whose patterns match the message, or None.

    Non-string and empty input returns None.
    """
    if not message_text or not isinstance(message_text, str):
        return None
    for objection in get_objections():
        if objection.matches(message_text):
            logger.debug(f"Objection detected: {objection.id}")
            return objection
    return None


def format_objection_context(objection: Objection | None, language: str = "en") -> str:
    """
    Render an objection entry as guidance text for the generative responder.

    Soft-close objections instruct the responder to ask an open question instead of
    offering concrete times.
    """
    if objection is None:
        return ""

    lang = "es" if language == "es" else "en"
    closing = objection.closing(lang)
    questions = "\n".join(
        f'{i}. "{question}"' for i, question in enumerate(objection.diagnostic_questions, 1)
    )

    if objection.soft_close:
        close_rule = f'SOFT CLOSE: do NOT offer specific times. Just ask: "{closing}"'
    else:
        close_rule = (
            "If they already have a confirmed/preferred time, reference THAT time + "
            f"'or a different time' + closing touch: \"{closing}\""
        )

    if objection.financing_hook:
        financing_rule = str(objection.financing_hook)
    else:
        financing_rule = "Do NOT mention financing for the deposit"

    return "\n".join(
        [
            f"OBJECTION DETECTED: {objection.id.upper()}",
            f"Category: {objection.category}",
            "",
            "Belief to fix:",
            objection.belief_to_fix,
            "",
            "Diagnostic questions (use 1 if needed):",
            questions,
            "",
            "Core reframe:",
            objection.core_reframe,
            "",
            f'Closing touch: "{closing}"',
            "",
            f"Response template ({lang.upper()}):",
            f'"{objection.template(lang)}"',
            "",
            "Rules:",
            "1. Keep the response to 1-3 short bubbles",
            "2. Address the underlying belief, not just the surface objection",
            f"3. {close_rule}",
            "4. Mention the refundable deposit and that it goes toward the tattoo",
            f"5. Match their language ({'Spanish' if lang == 'es' else 'English'})",
            f"6. {financing_rule}",
        ]
    )
