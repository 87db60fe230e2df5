"""Unit tests for the HSTS and access-log handler wrappers."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from lite_idp.domain.http_types import HttpRequest, HttpResponse
from lite_idp.lifecycle.manager import build_handler_stack
from lite_idp.pipeline.access_log import access_log, combined_log_line
from lite_idp.security.hsts import HSTS_HEADER, hsts

EXPECTED_HSTS = "max-age=63072000; includeSubDomains"


def _request(method: str = "GET", path: str = "/", **headers: str) -> HttpRequest:
    return HttpRequest(
        method,
        path,
        {name.replace("_", "-"): value for name, value in headers.items()},
        b"",
        "HTTP/1.1",
        path,
        ("10.0.0.7", 51234),
    )


@pytest.mark.parametrize("method", ["GET", "POST", "DELETE"])
@pytest.mark.parametrize(
    "status_line",
    ["HTTP/1.1 200 OK", "HTTP/1.1 302 Found", "HTTP/1.1 404 Not Found", "HTTP/1.1 500 Oops"],
)
def test_hsts_header_added_for_any_method_and_status(method: str, status_line: str) -> None:
    handler = hsts(lambda request: HttpResponse(status_line, {"X-App": "1"}, b"body"))

    response = handler(_request(method, "/any/path"))

    assert response.headers[HSTS_HEADER] == EXPECTED_HSTS
    assert response.headers["X-App"] == "1"
    assert response.body == b"body"


def test_hsts_overrides_handler_supplied_value() -> None:
    handler = hsts(
        lambda request: HttpResponse("HTTP/1.1 200 OK", {HSTS_HEADER: "max-age=0"})
    )

    assert handler(_request()).headers[HSTS_HEADER] == EXPECTED_HSTS


def test_hsts_passes_request_through_unchanged() -> None:
    seen = []

    def inner(request: HttpRequest) -> HttpResponse:
        seen.append(request)
        return HttpResponse("HTTP/1.1 204 No Content")

    request = _request("PUT", "/x")
    hsts(inner)(request)

    assert seen == [request]


def test_combined_log_line_format() -> None:
    request = _request(
        "GET", "/metadata", referer="https://sp.test/", user_agent='curl/8 "x"'
    )
    response = HttpResponse("HTTP/1.1 200 OK", {}, b"12345")
    timestamp = datetime(2017, 3, 4, 5, 6, 7, tzinfo=timezone(timedelta(hours=-5)))

    line = combined_log_line(request, response, timestamp)

    assert line == (
        '10.0.0.7 - - [04/Mar/2017:05:06:07 -0500] "GET /metadata HTTP/1.1" 200 5 '
        '"https://sp.test/" "curl/8 \\"x\\""'
    )


def test_access_log_records_each_request(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="lite_idp.access")
    handler = access_log(lambda request: HttpResponse("HTTP/1.1 404 Not Found"))

    response = handler(_request("GET", "/missing"))

    assert response.status_code == 404
    record = next(r for r in caplog.records if r.name == "lite_idp.access")
    assert record.event == "request_completed"
    assert record.status_code == 404
    assert record.route == "/missing"
    assert '"GET /missing HTTP/1.1" 404 0' in record.getMessage()


def test_access_log_turns_handler_errors_into_500(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="lite_idp.access")

    def broken(request: HttpRequest) -> HttpResponse:
        raise RuntimeError("boom")

    response = access_log(broken)(_request())

    assert response.status_code == 500
    assert response.headers[HSTS_HEADER] == EXPECTED_HSTS
    assert response.close_connection is True
    events = [getattr(r, "event", None) for r in caplog.records]
    assert "handler_error" in events
    assert "request_completed" in events


def test_handler_stack_logs_and_annotates_rejections(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="lite_idp.access")
    stack = build_handler_stack(
        lambda request: HttpResponse("HTTP/1.1 403 Forbidden", {}, b"no")
    )

    response = stack(_request("POST", "/SAML2/SOAP/AttributeQuery"))

    assert response.status_code == 403
    assert response.headers[HSTS_HEADER] == EXPECTED_HSTS
    assert any(r.status_code == 403 for r in caplog.records if r.name == "lite_idp.access")
