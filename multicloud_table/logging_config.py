"""
Logging infrastructure for multicloud table clients.

Provides structured logging with JSON formatting, redaction of storage
credentials and silent loggers for adapters running with logging disabled.
"""

import logging
import logging.handlers
import json
import sys
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_NULL_LOGGER_NAME = "multicloud_table.null"

_SIZE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(GB|MB|KB|B)?")
_SIZE_UNITS = {"GB": 1024 ** 3, "MB": 1024 ** 2, "KB": 1024, "B": 1, None: 1}


class SensitiveDataFilter(logging.Filter):
    """Filter to redact credentials from log messages."""

    PATTERNS = [
        (re.compile(r'(AccountKey=)[^;]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(SharedAccessSignature=)[^;&]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(sig=)[^;&]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)[^\s"\']+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'("private_key"\s*:\s*")[^"]+', re.IGNORECASE), r'\1***REDACTED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from log record."""
        if isinstance(record.msg, str):
            for pattern, replacement in self.PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        """Apply every redaction pattern to a string."""
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def __init__(self):
        fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
    rotation_size: str = "10MB",
    rotation_count: int = 5,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Configure logging for applications using the table clients.

    Args:
        level: Default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ("json" or "text")
        log_file: Optional file path for log output
        rotation_size: Size limit for log rotation (e.g., "10MB")
        rotation_count: Number of rotated log files to keep
        module_levels: Optional dict of module-specific log levels
                      e.g., {"multicloud_table.providers.google": "DEBUG"}
    """
    formatter = JSONFormatter() if format_type == "json" else TextFormatter()
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=_parse_size(rotation_size),
            backupCount=rotation_count,
            encoding="utf-8"
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    redactor = SensitiveDataFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
        root_logger.addHandler(handler)

    for module_name, module_level in (module_levels or {}).items():
        logging.getLogger(module_name).setLevel(getattr(logging, module_level.upper()))

    root_logger.debug(
        "Logging configured: level=%s, format=%s, file=%s", level, format_type, log_file
    )


def _parse_size(size_str: str) -> int:
    """
    Parse size string to bytes.

    Args:
        size_str: Size string (e.g., "10MB", "1GB")

    Returns:
        Size in bytes

    Raises:
        ValueError: If the string is not a number with an optional unit
    """
    match = _SIZE_PATTERN.fullmatch(size_str.strip().upper())
    if match is None:
        raise ValueError(f"Invalid size: {size_str}")
    return int(float(match.group(1)) * _SIZE_UNITS[match.group(2)])


def _null_logger() -> logging.Logger:
    null_logger = logging.getLogger(_NULL_LOGGER_NAME)
    if not null_logger.handlers:
        null_logger.addHandler(logging.NullHandler())
    null_logger.propagate = False
    null_logger.disabled = True
    return null_logger


def get_logger(name: str, enabled: bool = True) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__)
        enabled: When False a silent logger is returned, so diagnostic
                 output is only produced for clients with logging enabled

    Returns:
        Logger instance
    """
    if not enabled:
        return _null_logger()
    return logging.getLogger(name)
