"""Observability module: structured logging with entity context."""

from insurance_core.observability.logger import (
    EntityLogger,
    entity_context,
    get_logger,
    log_lifecycle_event,
)

__all__ = [
    "EntityLogger",
    "entity_context",
    "get_logger",
    "log_lifecycle_event",
]
