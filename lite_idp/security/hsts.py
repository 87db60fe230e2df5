"""Strict-Transport-Security response header middleware."""

from lite_idp.bootstrap.config import SECURITY_HEADERS
from lite_idp.domain.http_types import Handler, HttpRequest, HttpResponse

HSTS_HEADER = "Strict-Transport-Security"
HSTS_VALUE = SECURITY_HEADERS[HSTS_HEADER]


def hsts(handler: Handler) -> Handler:
    """Wrap a handler so every response tells clients to only use HTTPS."""

    def _handle(request: HttpRequest) -> HttpResponse:
        response = handler(request)
        response.headers[HSTS_HEADER] = HSTS_VALUE
        return response

    return _handle
