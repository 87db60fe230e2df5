"""Access logging middleware in Apache combined log format."""

import time
from datetime import datetime, timezone

from lite_idp.bootstrap.config import SECURITY_HEADERS
from lite_idp.domain.correlation_id import get_logger
from lite_idp.domain.http_types import Handler, HttpRequest, HttpResponse
from lite_idp.domain.response_builders import internal_error_response

ACCESS_LOGGER = get_logger("access")

CLF_TIME_FORMAT = "%d/%b/%Y:%H:%M:%S %z"


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def combined_log_line(
    request: HttpRequest, response: HttpResponse, timestamp: datetime
) -> str:
    """Render one request as an Apache combined log line."""
    target = request.target or request.path
    request_line = f"{request.method} {target} {request.version}"
    referer = request.headers.get("referer", "-")
    user_agent = request.headers.get("user-agent", "-")
    return (
        f"{request.client_host} - - [{timestamp.strftime(CLF_TIME_FORMAT)}] "
        f'"{_quote(request_line)}" {response.status_code} {len(response.body)} '
        f'"{_quote(referer)}" "{_quote(user_agent)}"'
    )


def access_log(handler: Handler) -> Handler:
    """Wrap a handler so every request is logged once it has a response.

    An exception escaping the wrapped handler is logged and answered with a
    500 response so the request still gets an access log entry.
    """

    def _handle(request: HttpRequest) -> HttpResponse:
        started = time.monotonic()
        timestamp = datetime.now(timezone.utc).astimezone()
        try:
            response = handler(request)
        except Exception as error:  # pylint: disable=broad-except
            ACCESS_LOGGER.error(
                "Unhandled error in request handler",
                extra={
                    "event": "handler_error",
                    "route": request.path,
                    "error_type": type(error).__name__,
                },
                exc_info=True,
            )
            response = internal_error_response(request, SECURITY_HEADERS)

        duration_ms = round((time.monotonic() - started) * 1000, 3)
        ACCESS_LOGGER.info(
            combined_log_line(request, response, timestamp),
            extra={
                "event": "request_completed",
                "client": request.client_host,
                "method": request.method,
                "route": request.path,
                "status_code": response.status_code,
                "bytes_out": len(response.body),
                "duration_ms": duration_ms,
            },
        )
        return response

    return _handle
