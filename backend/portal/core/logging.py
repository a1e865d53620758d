"""Client Portal Logging Configuration.

Security events (lockouts, throttling, rejected tickets) carry their context
as ``extra`` fields so the structured output can be filtered on them. Every
record passes through SecretRedactionFilter before it is formatted, so setup
tokens, OTPs and passwords that end up in a message (typically inside a link)
are masked.
"""

import json
import logging
import re
import sys
from typing import Literal

DEV_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Record attributes copied into structured output when set via ``extra``
CONTEXT_FIELDS = ("event", "client_code", "username", "client_ip", "attempts")

REDACTED = "***"

_SECRET_PATTERN = re.compile(
    r"(?P<key>\b\w*(?:token|otp|password)[\"']?\s*[=:]\s*[\"']?)"
    r"(?P<value>[^\s&\"',;]+)",
    re.IGNORECASE,
)


def redact_secrets(message: str) -> str:
    """Mask the value of every ``token=``/``otp=``/``password=`` pair."""
    return _SECRET_PATTERN.sub(lambda m: f"{m.group('key')}{REDACTED}", message)


class SecretRedactionFilter(logging.Filter):
    """Rewrites the record message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _context(record: logging.LogRecord) -> dict[str, object]:
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter.

    Uses json.dumps() so quotes, backslashes and newlines in messages
    never produce malformed lines.
    """

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class DevFormatter(logging.Formatter):
    """Readable single-line format with any security context appended."""

    def __init__(self):
        super().__init__(fmt=DEV_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if context:
            line += " | " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def setup_logging(
    level: str = "INFO",
    format_type: Literal["structured", "dev"] = "dev",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format - 'structured' for JSON, 'dev' for readable
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if format_type == "structured" else DevFormatter())
    handler.addFilter(SecretRedactionFilter())
    logging.root.handlers = [handler]
    logging.root.setLevel(getattr(logging, level.upper()))

    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING
    )

    # httpx logs every request line at INFO, which includes email API calls
    logging.getLogger("httpx").setLevel(logging.WARNING)

    get_logger("logging").info(f"Logging configured: level={level}, format={format_type}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the portal prefix."""
    return logging.getLogger(f"portal.{name}")
