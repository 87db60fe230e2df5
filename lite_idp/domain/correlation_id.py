"""Per-request IDs carried through log records and the X-Request-ID header."""

import contextvars
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping, Optional

ROOT_LOGGER_PREFIX = "lite_idp."
NO_CORRELATION_ID = "-"

_current_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "lite_idp_request_id", default=None
)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex


def get_correlation_id() -> Optional[str]:
    return _current_request_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _current_request_id.set(correlation_id)


def clear_correlation_id() -> None:
    _current_request_id.set(None)


@contextmanager
def request_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind an ID for the duration of one request, restoring the previous one after."""
    token = _current_request_id.set(correlation_id or generate_correlation_id())
    try:
        yield _current_request_id.get() or NO_CORRELATION_ID
    finally:
        _current_request_id.reset(token)


def component_for(logger_name: str) -> str:
    """``lite_idp.transport.worker`` is reported as ``transport.worker``."""
    if logger_name.startswith(ROOT_LOGGER_PREFIX):
        return logger_name[len(ROOT_LOGGER_PREFIX) :]
    return logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Stamps every record with the active request ID and the emitting component."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["correlation_id"] = get_correlation_id() or NO_CORRELATION_ID
        extra["component"] = component_for(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> CorrelationLoggerAdapter:
    """Return a correlation-aware adapter for a ``lite_idp`` child logger."""
    return CorrelationLoggerAdapter(logging.getLogger(f"{ROOT_LOGGER_PREFIX}{name}"), {})
