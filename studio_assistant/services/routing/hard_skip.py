"""
Hard-skip router - decides whether a deterministic handler must own the turn.

Only turns that need a side-effecting external call (calendar, payments) are
hard-routed; everything else goes to the generative responder. Rules are an
ordered table evaluated first-match-wins, so precedence is data, not code order.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from studio_assistant.constants.response_tags import (
    REASON_DEPOSIT_INTENT,
    REASON_DEPOSIT_WITH_CONSULT_QUESTION,
    REASON_RESCHEDULE_OR_CANCEL,
    REASON_SCHEDULING_INTENT,
    REASON_SLOT_SELECTION,
    REASON_TRANSLATOR_AFFIRM_INTENT,
)
from studio_assistant.services.intents.intent_classifier import Intents
from studio_assistant.services.state.canonical_state import CanonicalState

logger = logging.getLogger(__name__)

RoutePredicate = Callable[[Intents, str | None, CanonicalState], bool]


@dataclass(frozen=True)
class RouteDecision:
    skip: bool
    reason: str | None = None


def _reschedule_or_cancel(intents: Intents, phase: str | None, state: CanonicalState) -> bool:
    return intents.reschedule_intent or intents.cancel_intent


def _slot_selection(intents: Intents, phase: str | None, state: CanonicalState) -> bool:
    return intents.slot_selection_intent


def _deposit_with_consult_question(intents: Intents, phase: str | None, state: CanonicalState) -> bool:
    return intents.deposit_intent and (
        intents.consult_path_choice_intent or intents.consult_question_intent
    )


def _deposit(intents: Intents, phase: str | None, state: CanonicalState) -> bool:
    return intents.deposit_intent


def _scheduling(intents: Intents, phase: str | None, state: CanonicalState) -> bool:
    if intents.scheduling_intent:
        return True
    # "ok let's do it" with nothing offered yet means "show me times"
    return (
        intents.booking_intent
        and not state.times_sent
        and not state.has_offered_slots
        and not state.has_active_hold
    )


def _translator_affirm(intents: Intents, phase: str | None, state: CanonicalState) -> bool:
    return intents.translator_affirm_intent


ROUTING_RULES: tuple[tuple[str, RoutePredicate], ...] = (
    (REASON_RESCHEDULE_OR_CANCEL, _reschedule_or_cancel),
    (REASON_SLOT_SELECTION, _slot_selection),
    (REASON_DEPOSIT_WITH_CONSULT_QUESTION, _deposit_with_consult_question),
    (REASON_DEPOSIT_INTENT, _deposit),
    (REASON_SCHEDULING_INTENT, _scheduling),
    (REASON_TRANSLATOR_AFFIRM_INTENT, _translator_affirm),
)


def route(intents: Intents, phase: str | None, state: CanonicalState) -> RouteDecision:
    """
    Pick the deterministic path for this turn, if any.

    Returns:
        RouteDecision(skip=True, reason=...) for the first matching rule,
        otherwise RouteDecision(skip=False, reason=None)
    """
    for reason, predicate in ROUTING_RULES:
        if predicate(intents, phase, state):
            logger.info(f"Hard-skip route: {reason} (phase={phase})")
            return RouteDecision(skip=True, reason=reason)
    return RouteDecision(skip=False, reason=None)
