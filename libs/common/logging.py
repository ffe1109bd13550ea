import json
import logging
import sys
from typing import Optional

from libs.common.config import Settings, get_settings

# Loggers that are chatty at INFO and only interesting when they warn.
QUIET_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "aiosqlite",
    "arq.jobs",
)


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, tagged with the service and environment.

    Per-call context goes in ``extra={"extra_fields": {...}}``; the keys are
    merged into the top level of the record.
    """

    def __init__(self, service: str, environment: str):
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "service": self.service,
            "env": self.environment,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "extra_fields", None)
        if isinstance(context, dict):
            payload.update(context)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ContextFormatter(logging.Formatter):
    """Plain-text formatter for local runs that still shows ``extra_fields``."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "extra_fields", None)
        if isinstance(context, dict) and context:
            pairs = " ".join(f"{key}={value}" for key, value in context.items())
            line = f"{line} [{pairs}]"
        return line


class _StorefrontHandler(logging.StreamHandler):
    """Marker type so reconfiguring only replaces our own handler."""


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Install the storefront log handler on the root logger.

    Safe to call more than once (app factory and worker both call it);
    handlers installed by other tools, such as pytest's capture, are kept.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in list(root_logger.handlers):
        if isinstance(existing, _StorefrontHandler):
            root_logger.removeHandler(existing)

    handler = _StorefrontHandler(sys.stdout)
    handler.setLevel(log_level)
    if settings.ENVIRONMENT in ("local", "test"):
        handler.setFormatter(
            ContextFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        handler.setFormatter(JsonFormatter(settings.SERVICE_NAME, settings.ENVIRONMENT))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
