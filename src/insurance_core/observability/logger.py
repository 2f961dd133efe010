"""Structured logging with entity context for lifecycle operations.

This module provides:
- EntityLogger: A structured logger that attaches entity type/id to all log messages
- entity_context: A context manager for setting entity context
- log_lifecycle_event: Helper for logging lifecycle transitions
"""

import json
import logging
import os
import sys
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

_LOG_FORMAT_ENV = "INSURANCE_CORE_LOG_FORMAT"
_LOG_LEVEL_ENV = "INSURANCE_CORE_LOG_LEVEL"

# Per-thread entity context; each request thread sees only its own
_local = threading.local()


def _get_entity_context() -> dict[str, Any]:
    """Get the current entity context from thread-local storage."""
    return getattr(_local, "entity", {})


def _set_entity_context(data: dict[str, Any]) -> None:
    _local.entity = data


def _entity_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Entity type/id and actor for a record; record attributes win over the block context."""
    ctx = _get_entity_context()
    fields = {
        "entity_type": getattr(record, "entity_type", None) or ctx.get("entity_type"),
        "entity_id": getattr(record, "entity_id", None) or ctx.get("entity_id"),
        "actor_id": ctx.get("actor_id"),
    }
    return {k: v for k, v in fields.items() if v}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {}
        if self.include_timestamp:
            payload["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        payload.update(
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
            **_entity_fields(record),
        )
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["data"] = extra_data
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }
        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``<time> <LEVEL> [<entity>=<id>] <logger>: <message>`` lines for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        fields = _entity_fields(record)
        tag = ""
        if "entity_type" in fields and "entity_id" in fields:
            tag = f" [{fields['entity_type']}={fields['entity_id']}]"

        text = record.getMessage()
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            text = f"{text} | {extra_data}"

        out = f"{stamp} {record.levelname:8}{tag} {record.name}: {text}"
        if record.exc_info:
            out = f"{out}\n{self.formatException(record.exc_info)}"
        return out


class EntityLogger(logging.LoggerAdapter):
    """Logger adapter that tags every record with an entity type and id."""

    def __init__(
        self,
        logger: logging.Logger,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ):
        super().__init__(logger, {})
        self._entity_type = entity_type
        self._entity_id = entity_id

    def bind(self, entity_type: str, entity_id: str) -> "EntityLogger":
        """Return a logger for the same channel tagged with another entity."""
        return EntityLogger(self.logger, entity_type, entity_id)

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        tags = kwargs.setdefault("extra", {})
        for key, value in (("entity_type", self._entity_type), ("entity_id", self._entity_id)):
            if value and not tags.get(key):
                tags[key] = value
        return msg, kwargs

    def log_event(self, event: str, level: int = logging.INFO, **data: Any) -> None:
        """Log a named lifecycle event for this logger's entity."""
        log_lifecycle_event(
            self,
            event,
            entity_type=self._entity_type,
            entity_id=self._entity_id,
            level=level,
            **data,
        )


def _build_handler(structured: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter() if structured else HumanReadableFormatter())
    return handler


def get_logger(
    name: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    structured: bool | None = None,
) -> EntityLogger:
    """Get an EntityLogger, attaching a stderr handler the first time a channel is used.

    Args:
        name: Logger name (typically __name__)
        entity_type: Optional entity kind ("policy", "claim", "payment")
        entity_id: Optional entity id to attach to all logs
        structured: JSON output when True, human-readable when False.
            None reads INSURANCE_CORE_LOG_FORMAT ("json" or "human", default human).
    """
    base = logging.getLogger(name)

    if not base.handlers:
        if structured is None:
            structured = os.environ.get(_LOG_FORMAT_ENV, "human").lower() == "json"
        base.addHandler(_build_handler(structured))
        level_name = os.environ.get(_LOG_LEVEL_ENV, "INFO").upper()
        base.setLevel(getattr(logging, level_name, logging.INFO))
        # Channels own their handler; no second copy via the root logger
        base.propagate = False

    return EntityLogger(base, entity_type, entity_id)


@contextmanager
def entity_context(
    entity_type: str,
    entity_id: str,
    actor_id: str | None = None,
    **extra: Any,
):
    """Tag every record emitted inside the block with an entity and actor.

    Usage:
        with entity_context("claim", "CLM-2024-1A2B3C4D", actor_id="admin-1"):
            logger.info("Approving claim")
    """
    previous = _get_entity_context()
    _set_entity_context(
        {"entity_type": entity_type, "entity_id": entity_id, "actor_id": actor_id, **extra}
    )
    try:
        yield
    finally:
        _set_entity_context(previous)


def log_lifecycle_event(
    logger: logging.Logger | EntityLogger,
    event: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    level: int = logging.INFO,
    **data: Any,
) -> None:
    """Log ``[event] k=v, ...`` with the event and its data under ``extra_data``.

    Args:
        logger: Logger instance
        event: Event name (e.g., "claim_created", "payment_completed")
        entity_type: Entity kind (optional if using entity_context)
        entity_id: Entity id (optional if using entity_context)
        level: Log level
        **data: Additional event data
    """
    details = ", ".join(f"{key}={value}" for key, value in data.items())
    message = f"[{event}] {details}" if details else f"[{event}]"
    logger.log(
        level,
        message,
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "extra_data": {"event": event, **data},
        },
    )
