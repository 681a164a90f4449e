"""
Structured logging.

Loggers accept keyword context next to the message:

    logger = get_logger(__name__)
    logger.info("Order marked as paid", order_id=42, tenant_id="t1")

Production renders one JSON object per line; development renders a coloured
line with the context appended. Every record carries the correlation id of
the request being served, when there is one.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


def _request_id(record: logging.LogRecord) -> str | None:
    request_id = getattr(record, "request_id", None)
    return request_id if request_id and request_id != "-" else None


class JsonFormatter(logging.Formatter):
    """One JSON document per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = _request_id(record)
        if request_id:
            entry["request_id"] = request_id
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if settings.debug:
            entry["source"] = f"{record.pathname}:{record.lineno}"
        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        when = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{color}{when} {record.levelname:<8}{self.RESET}"]

        request_id = _request_id(record)
        if request_id:
            parts.append(f"[{request_id[:8]}]")
        parts.append(f"{record.name}: {record.getMessage()}")

        context = getattr(record, "context", None)
        if context:
            parts.append(" ".join(f"{key}={value}" for key, value in context.items()))

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """Logger whose level methods take keyword context (stored on record.context)."""

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **context: Any,
    ) -> None:
        extra = dict(extra or {})
        extra["context"] = context or None
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """Install the stdout handler on the root logger. Called once at startup."""
    from shared.infrastructure.correlation import CorrelationIdFilter

    level = logging.DEBUG if settings.debug else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(JsonFormatter() if settings.environment == "production" else ConsoleFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers[:] = [handler]

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def mask_phone(phone: str | None) -> str:
    """
    "5511987654321" -> "55*******4321": country code and last four digits
    stay readable so support can still match a delivery.
    """
    if not phone:
        return "<no-phone>"
    digits = "".join(ch for ch in phone if ch.isdigit())
    if len(digits) <= 6:
        return "***" + digits[-2:]
    return digits[:2] + "*" * (len(digits) - 6) + digits[-4:]


def mask_token(token: str | None) -> str:
    """First six characters only; enough to tell a TEST- token from APP_USR-."""
    if not token:
        return "<no-token>"
    if len(token) <= 6:
        return "***"
    return f"{token[:6]}..."


webhook_api_logger = get_logger("webhook_api")
webhook_logger = get_logger("webhook_api.webhooks")
