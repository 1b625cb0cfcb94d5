"""
Structured logging setup shared by the API and the job worker.
"""
import logging
import sys
from typing import Any

import structlog

from config import LOG_JSON, LOG_LEVEL


def add_service(logger: Any, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", "storefront-api")
    return event_dict


def setup_logging(service: str = "storefront-api") -> None:
    """
    Configure structlog on top of the standard library logger.

    JSON lines when LOG_JSON is set, coloured console output otherwise.
    """
    renderer = structlog.processors.JSONRenderer() if LOG_JSON else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_service,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    # Quiet chatty client libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info("logging_configured", log_level=LOG_LEVEL, json=LOG_JSON)
