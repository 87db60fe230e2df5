"""Pure HTTP response builders."""

from typing import Optional

from lite_idp.domain.http_types import HttpRequest, HttpResponse, should_close


def _connection_preference(request: Optional[HttpRequest]) -> bool:
    if request is None:
        return True
    return should_close(request.headers, request.version)


def text_response(
    status_line: str,
    message: str,
    request: Optional[HttpRequest],
    security_headers: dict[str, str],
) -> HttpResponse:
    """Return a text/plain response honoring the caller's connection preference."""
    headers = {"Content-Type": "text/plain; charset=utf-8", **security_headers}
    return HttpResponse(
        status_line, headers, message.encode(), _connection_preference(request)
    )


def not_found_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return text_response("HTTP/1.1 404 Not Found", "not found", request, security_headers)


def not_implemented_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Return a 501 response for endpoints without a backing service."""
    return text_response(
        "HTTP/1.1 501 Not Implemented", "not implemented", request, security_headers
    )


def bad_request_response(
    request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 400 response honoring the caller's connection preference."""
    return HttpResponse(
        "HTTP/1.1 400 Bad Request",
        security_headers.copy(),
        b"",
        _connection_preference(request),
    )


def entity_too_large_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return HttpResponse(
        "HTTP/1.1 413 Payload Too Large", security_headers.copy(), b"", True
    )


def internal_error_response(
    request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 500 response that always closes the connection."""
    headers = {"Content-Type": "text/plain; charset=utf-8", **security_headers}
    return HttpResponse(
        "HTTP/1.1 500 Internal Server Error", headers, b"internal server error", True
    )


def healthz_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a health check response."""
    return text_response("HTTP/1.1 200 OK", "ok", request, security_headers)
