"""
Structured logging configuration.

structlog renders every event as one JSON line on stdout; standard library
loggers (uvicorn, SQLAlchemy, httpx) go through the same JSON formatter.
Guardian contact details are masked before rendering.
"""
import logging
import sys
from typing import Any, MutableMapping

import structlog
from pythonjsonlogger import jsonlogger

from event_payments.config import Settings, get_settings

MASKED_FIELDS = frozenset({"guardian_phone", "guardian_phone_number", "email", "contact_email"})

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def mask_value(value: Any) -> Any:
    """Keep the last four characters of a string, hide the rest."""
    if not isinstance(value, str) or len(value) <= 4:
        return "****"
    return "*" * (len(value) - 4) + value[-4:]


def mask_contact_details(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in MASKED_FIELDS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = mask_value(event_dict[key])
    return event_dict


def service_context(settings: Settings) -> Any:
    """Build a processor stamping every event with the service name and environment."""

    def add_service_context(
        logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("env", settings.app_env)
        return event_dict

    return add_service_context


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structlog and the root logger.

    Safe to call more than once; handlers are replaced, not stacked.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            mask_contact_details,
            service_context(settings),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).debug("logging_configured", log_level=settings.log_level)
