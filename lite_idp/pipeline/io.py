"""HTTP Input/Output operations."""

import socket
import urllib.parse
from typing import Optional, Tuple

from lite_idp.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES
from lite_idp.domain.correlation_id import (
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from lite_idp.domain.http_types import HttpRequest, HttpResponse

IO_LOGGER = get_logger("io")

MAX_HEADER_BYTES = 64 * 1024
SUPPORTED_VERSIONS = {"HTTP/1.0", "HTTP/1.1"}


class RequestEntityTooLarge(Exception):
    """Raised when a request head or body exceeds configured limits."""


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        if ":" in line:
            name, value = line.split(":", 1)
            parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str, str]:
    """Parse method, raw target, decoded path and version from the request line."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if version not in SUPPORTED_VERSIONS:
        raise ValueError("Unsupported HTTP version")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path)
    if not path.startswith("/") or "\x00" in path:
        raise ValueError("Invalid request target")
    return method, target, path, version


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    if "transfer-encoding" in headers:
        raise ValueError("Transfer-Encoding not supported")
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return content_length


def receive_request(
    client_socket: socket.socket,
    buffer: bytes,
    client_address: Optional[tuple[str, int]] = None,
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available."""
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise RequestEntityTooLarge
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("iso-8859-1").split("\r\n")
    method, target, path, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    incoming_correlation_id = headers.get("x-request-id")
    if incoming_correlation_id:
        set_correlation_id(incoming_correlation_id)

    content_length = determine_content_length(headers)

    while len(remainder) < content_length:
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    IO_LOGGER.debug("Parsed request", extra={"method": method, "route": path})
    request = HttpRequest(method, path, headers, body, version, target, client_address)
    return request, leftover


def send_response(client_socket: socket.socket, response: HttpResponse) -> None:
    """Serialize and send the HTTP response over the socket."""
    headers = dict(response.headers)

    correlation_id = get_correlation_id()
    if correlation_id:
        headers["X-Request-ID"] = correlation_id

    headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode("iso-8859-1") + HEADER_DELIMITER
    client_socket.sendall(header_block + response.body)
    IO_LOGGER.debug(
        "Sent response",
        extra={"status_code": response.status_code, "bytes_out": len(response.body)},
    )
