"""
System event logging service.

Structured logging of key lifecycle events and failures (hold warnings, releases,
payment confirmations, send failures). There is no local database, so events are
emitted through the standard logger with a consistent ``extra`` payload that log
shippers can index. All events should go through log_event (or info/warn/error)
to keep the payload shape from drifting.
"""

import logging

logger = logging.getLogger(__name__)

_LEVELS = {
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


def _resolve_correlation_id(correlation_id: str | None) -> str | None:
    """Use request-scoped contextvar when not explicitly passed."""
    if correlation_id is not None:
        return correlation_id
    from studio_assistant.middleware.correlation_id import get_correlation_id

    return get_correlation_id(None)


def log_event(
    level: str,
    event_type: str,
    contact_id: str | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
    correlation_id: str | None = None,
) -> dict:
    """
    Emit a structured system event.

    Args:
        level: Event level (INFO, WARN, ERROR)
        event_type: Type of event (see constants.event_types)
        contact_id: Optional CRM contact id the event concerns
        payload: Optional additional event data (copied, never mutated)
        exc: Optional exception; its type and message are added to the payload
        correlation_id: Optional correlation ID (defaults to the request's)

    Returns:
        The event record that was logged
    """
    normalized: dict = dict(payload) if payload else {}
    if exc is not None:
        normalized["error"] = {
            "type": type(exc).__name__,
            "message": str(exc)[:500],
        }

    event = {
        "level": level.upper(),
        "event_type": event_type,
        "contact_id": contact_id,
        "correlation_id": _resolve_correlation_id(correlation_id),
        "payload": normalized or None,
    }
    logger.log(
        _LEVELS.get(event["level"], logging.INFO),
        f"[{event_type}] contact={contact_id} payload={normalized or {}}",
        extra={"system_event": event},
    )
    return event


def info(event_type: str, contact_id: str | None = None, payload: dict | None = None, **kwargs) -> dict:
    """Log an INFO-level system event."""
    return log_event("INFO", event_type, contact_id=contact_id, payload=payload, **kwargs)


def warn(event_type: str, contact_id: str | None = None, payload: dict | None = None, **kwargs) -> dict:
    """Log a WARN-level system event."""
    return log_event("WARN", event_type, contact_id=contact_id, payload=payload, **kwargs)


def error(event_type: str, contact_id: str | None = None, payload: dict | None = None, **kwargs) -> dict:
    """Log an ERROR-level system event."""
    return log_event("ERROR", event_type, contact_id=contact_id, payload=payload, **kwargs)
