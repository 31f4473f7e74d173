"""Structured logging configuration."""

import logging
import sys
from pythonjsonlogger import jsonlogger
from admin_assistant.infra.config import config


class RequestIdFilter(logging.Filter):
    """Stamp records with the id of the HTTP request being served, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            from admin_assistant.infra.middleware import current_request_id

            record.request_id = current_request_id.get()
        return True


def setup_logging():
    """Setup structured JSON logging for the admin_assistant logger tree."""
    logger = logging.getLogger("admin_assistant")
    logger.setLevel(logging.DEBUG if config.DEBUG else logging.INFO)

    # Remove existing handlers
    logger.handlers = []

    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(request_id)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RequestIdFilter())
    logger.addHandler(console_handler)

    # Third-party noise
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    return logger


app_logger = setup_logging()
