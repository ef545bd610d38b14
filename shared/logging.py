"""
Shared logging configuration for the RequestKit rules engine.
"""

import sys
import structlog
import logging
import uuid
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlation IDs
conversion_id_var: ContextVar[Optional[str]] = ContextVar('conversion_id', default=None)
profile_id_var: ContextVar[Optional[str]] = ContextVar('profile_id', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    # Service name is the first segment of the logger name
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add conversion and profile correlation to log events."""
    conversion_id = conversion_id_var.get()
    if conversion_id:
        event_dict["conversion_id"] = conversion_id

    profile_id = profile_id_var.get()
    if profile_id:
        event_dict["profile_id"] = profile_id

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_conversion_id(conversion_id: Optional[str] = None) -> str:
    """Set conversion ID in context."""
    if conversion_id is None:
        conversion_id = str(uuid.uuid4())
    conversion_id_var.set(conversion_id)
    return conversion_id


def set_profile_context(profile_id: Optional[str] = None):
    """Set active profile in logging context."""
    if profile_id:
        profile_id_var.set(profile_id)


def clear_context():
    """Clear all context variables."""
    conversion_id_var.set(None)
    profile_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
