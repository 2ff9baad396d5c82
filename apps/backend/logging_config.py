"""
Ganttium - Logging Configuration
================================
structlog setup shared by the API, the chat socket and the background
exchange-rate scheduler.

Every entry carries the request id (bound by the request middleware) and,
once a caller is authenticated, the acting user. Credentials are redacted
and phone numbers are masked before anything is rendered.
"""

import logging
import re
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict, Processor

REDACTED_KEYS = (
    "password", "secret", "token", "authorization", "cookie", "api_key",
)

# Keys whose values are stakeholder phone numbers (SMS recipients)
PHONE_KEYS = {"to", "phone", "recipient", "from_number"}

MAX_VALUE_LENGTH = 1000

# Chatty libraries, raised to WARNING unless running at DEBUG
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "aiosqlite")

_PHONE_DIGITS = re.compile(r"\d")


def mask_phone(value: str) -> str:
    """Keep the last four digits: ``+15551234567`` -> ``***4567``."""
    digits = _PHONE_DIGITS.findall(value)
    if len(digits) <= 4:
        return "***"
    return "***" + "".join(digits[-4:])


def _scrub(data: Dict[str, Any]) -> Dict[str, Any]:
    scrubbed = {}
    for key, value in data.items():
        name = str(key).lower()
        if any(marker in name for marker in REDACTED_KEYS):
            scrubbed[key] = "***REDACTED***"
        elif name in PHONE_KEYS and isinstance(value, str):
            scrubbed[key] = mask_phone(value)
        elif isinstance(value, dict):
            scrubbed[key] = _scrub(value)
        elif isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            # Chat bodies and import payloads
            scrubbed[key] = value[:100] + "...[truncated]"
        else:
            scrubbed[key] = value
    return scrubbed


def scrub_event(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    return _scrub(event_dict)


def add_service_name(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", "ganttium-api")
    return event_dict


def bind_actor(user_id: str, organization_id: Optional[int] = None) -> None:
    """Attach the authenticated user (and tenant, when known) to later log entries of this request."""
    context = {"user_id": user_id}
    if organization_id is not None:
        context["organization_id"] = organization_id
    structlog.contextvars.bind_contextvars(**context)


def configure_logging(environment: str = "development", log_level: str = "INFO") -> None:
    """
    Configure structlog and the stdlib root logger.

    Production renders one JSON object per line; other environments use the
    console renderer (colored only in development).
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_service_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        scrub_event,
    ]

    if environment == "production":
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [
            structlog.dev.ConsoleRenderer(
                colors=environment == "development",
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
