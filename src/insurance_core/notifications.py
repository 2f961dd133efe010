"""Notification dispatch for committed lifecycle transitions.

Delivery (email, SMS, push, templating) lives outside the engine. The engine
hands each committed event to a NotificationDispatcher; a failing dispatcher
is logged and never undoes the transition that triggered it.
"""

import logging
from typing import Any, Protocol

from insurance_core.observability import get_logger

logger = get_logger(__name__)

CLAIM_SUBMITTED = "claim_submitted"
CLAIM_STATUS_CHANGED = "claim_status_changed"
CLAIM_ASSIGNED = "claim_assigned"
PAYMENT_COMPLETED = "payment_completed"
PAYMENT_REFUNDED = "payment_refunded"
POLICY_STATUS_CHANGED = "policy_status_changed"


class NotificationDispatcher(Protocol):
    def notify(self, event: str, recipient_id: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher: records the event in the log and delivers nothing."""

    def notify(self, event: str, recipient_id: str, payload: dict[str, Any]) -> None:
        logger.log_event("notification", level=logging.DEBUG, event_name=event, recipient=recipient_id)


def dispatch(
    dispatcher: NotificationDispatcher | None,
    event: str,
    recipient_id: str | None,
    payload: dict[str, Any],
) -> None:
    """Fire-and-forget delivery of one event. Must only be called after commit."""
    if dispatcher is None or not recipient_id:
        return
    try:
        dispatcher.notify(event, recipient_id, payload)
    except Exception:
        logger.exception("Notification %s to %s failed; transition stays committed", event, recipient_id)
