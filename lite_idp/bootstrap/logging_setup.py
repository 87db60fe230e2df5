"""Install the single handler the identity provider logs through."""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from lite_idp.domain.correlation_id import NO_CORRELATION_ID, CorrelationLoggerAdapter

LOGGER_NAME = "lite_idp"
TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(component)s [%(correlation_id)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
ROTATE_AT_BYTES = 10 * 1024 * 1024
ROTATED_FILES_KEPT = 5

# Keys whose values are identifiers chosen by this process, never secrets.
UNREDACTED_KEYS = frozenset({"event", "route", "method", "state"})

SECRET_MARKERS = (
    re.compile(r"(?i)(authorization|token|signature|password|secret|private[_-]?key)="),
    re.compile(r"(?i)SAMLRequest|SAMLResponse|SAMLart"),
    re.compile(r"\b[A-Fa-f0-9]{40,}\b"),
    re.compile(r"\b[A-Za-z0-9+/]{48,}={0,2}"),
)

EXTRA_KEYS = (
    "event",
    "client",
    "method",
    "route",
    "status_code",
    "bytes_out",
    "duration_ms",
    "error",
    "error_type",
    "errno",
    "limit",
    "address",
    "config_file",
    "destination",
    "log_level",
    "use_json",
    "server_name",
    "entity_id",
    "tls_ca",
    "shutdown_grace_seconds",
    "remaining_workers",
    "signal",
    "state",
)


def redact_sensitive(value: str) -> str:
    """Replace values that look like credentials or SAML payloads."""
    if value and any(marker.search(value) for marker in SECRET_MARKERS):
        return "[REDACTED]"
    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Fill in the fields the text format expects on records from foreign loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = NO_CORRELATION_ID
        if not hasattr(record, "component"):
            record.component = record.name
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, keys sorted."""

    @staticmethod
    def _extras(record: logging.LogRecord) -> dict[str, Any]:
        extras: dict[str, Any] = {}
        for key in EXTRA_KEYS:
            if not hasattr(record, key):
                continue
            value = getattr(record, key)
            if isinstance(value, str) and key not in UNREDACTED_KEYS:
                value = redact_sensitive(value)
            extras[key] = value
        return extras

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "component": getattr(record, "component", record.name),
            "message": record.getMessage(),
            **self._extras(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handler(
    destination: Optional[str], level: int, use_json: bool = True
) -> logging.Handler:
    """Rotating file for a path destination, stdout otherwise."""
    handler: logging.Handler
    if destination and destination.lower() != "stdout":
        log_path = Path(destination)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_path, maxBytes=ROTATE_AT_BYTES, backupCount=ROTATED_FILES_KEPT
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    formatter = (
        JsonFormatter(datefmt=DATE_FORMAT)
        if use_json
        else logging.Formatter(TEXT_FORMAT, DATE_FORMAT)
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, use_json: bool = True
) -> CorrelationLoggerAdapter:
    """Replace any previous handler on the ``lite_idp`` logger and return an adapter.

    Unknown level names fall back to INFO. Records do not propagate to the
    root logger, so library code that configures the root logger does not
    duplicate output.
    """
    numeric_level = _resolve_level(level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.propagate = False

    while logger.handlers:
        stale = logger.handlers.pop()
        stale.close()
    logger.addHandler(_build_handler(destination, numeric_level, use_json))

    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": destination or "stdout",
            "log_level": logging.getLevelName(numeric_level),
            "use_json": use_json,
        },
    )
    return adapter
