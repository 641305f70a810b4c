"""Structured logging configuration for application and automation events."""

import json
import logging
import sys
from typing import Any

from app.core.config_file import get_settings

settings = get_settings()

# Create logger for automation diagnostics
automation_logger = logging.getLogger("app.automation")

# Create logger for application events
app_logger = logging.getLogger("app")
app_logger.setLevel(settings.LOG_LEVEL)


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        extra = getattr(record, "diagnostic", None)
        if extra:
            payload["diagnostic"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


# Create console handler with structured format
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(settings.LOG_LEVEL)

if settings.LOG_FORMAT == "json":
    console_handler.setFormatter(JSONFormatter())
else:
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

# Add handler to the root application logger if not already added
if not app_logger.handlers:
    app_logger.addHandler(console_handler)


def log_configuration_error(
    automation_id: str, event_id: str, code: str, message: str
) -> None:
    """
    Log an automation misconfiguration surfaced while processing an event.

    Args:
        automation_id: Automation UUID.
        event_id: Mutation event UUID.
        code: Stable error code (e.g. 'TYPE_MISMATCH').
        message: Human-readable diagnostic for the automation owner.
    """
    automation_logger.warning(
        f"Automation misconfigured - automation_id={automation_id}, "
        f"event_id={event_id}, code={code}: {message}",
        extra={
            "diagnostic": {
                "event": "configuration_error",
                "automation_id": automation_id,
                "event_id": event_id,
                "code": code,
            }
        },
    )


def log_chain_depth_exceeded(automation_id: str, event_id: str, depth: int) -> None:
    """
    Log a cascade halted by the chain depth cap.

    Args:
        automation_id: Automation that would have fired.
        event_id: Event that reached the cap.
        depth: Depth at which the chain was halted.
    """
    automation_logger.error(
        f"Chain depth exceeded - automation_id={automation_id}, "
        f"event_id={event_id}, depth={depth}",
        extra={
            "diagnostic": {
                "event": "chain_depth_exceeded",
                "automation_id": automation_id,
                "event_id": event_id,
                "depth": depth,
            }
        },
    )


def log_duplicate_race(
    automation_id: str,
    source_record_id: str,
    linked_target_id: str,
    orphan_target_id: str,
) -> None:
    """
    Log two target records created for the same source record.

    Both records are kept; the diagnostic is meant for manual reconciliation.
    """
    automation_logger.error(
        f"Duplicate race detected - automation_id={automation_id}, "
        f"source_record_id={source_record_id}, linked={linked_target_id}, "
        f"orphan={orphan_target_id}",
        extra={
            "diagnostic": {
                "event": "duplicate_race_detected",
                "automation_id": automation_id,
                "source_record_id": source_record_id,
                "linked_target_id": linked_target_id,
                "orphan_target_id": orphan_target_id,
            }
        },
    )
