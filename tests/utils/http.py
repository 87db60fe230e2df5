"""Utilities for talking raw HTTP over TLS sockets in tests."""

from __future__ import annotations

import socket
import ssl
import time
from dataclasses import dataclass
from typing import Dict, List

HEADER_DELIMITER = b"\r\n\r\n"


@dataclass(slots=True)
class RawHttpResponse:
    """Structured view of an HTTP response captured from a socket."""

    status_line: str
    headers: Dict[str, str]
    body: bytes

    @property
    def status_code(self) -> int:
        return int(self.status_line.split()[1])


def reserve_port(host: str = "127.0.0.1") -> int:
    """Return an available TCP port bound to the given host without listening."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def wait_for_port(host: str, port: int, timeout: float = 5.0) -> None:
    """Block until a TCP connection to host:port succeeds or timeout elapses."""

    deadline = time.perf_counter() + timeout
    while time.perf_counter() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.1):
                return
        except OSError:
            time.sleep(0.05)
    raise RuntimeError(f"Server did not start on {host}:{port} within {timeout}s")


def wait_for_port_closed(host: str, port: int, timeout: float = 5.0) -> bool:
    """Poll until connections to host:port are refused."""

    deadline = time.perf_counter() + timeout
    while time.perf_counter() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.1):
                pass
        except ConnectionRefusedError:
            return True
        except OSError:
            pass
        time.sleep(0.05)
    return False


def client_tls_context() -> ssl.SSLContext:
    """A client context that accepts the throwaway test certificate."""

    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def open_tls_connection(host: str, port: int, timeout: float = 5.0) -> ssl.SSLSocket:
    """Connect to host:port and complete a TLS handshake."""

    raw = socket.create_connection((host, port), timeout=timeout)
    return client_tls_context().wrap_socket(raw, server_hostname=host)


def read_http_response(sock: socket.socket) -> RawHttpResponse:
    """Read and parse an HTTP response with a Content-Length from an open socket."""

    buffer = b""
    while HEADER_DELIMITER not in buffer:
        chunk = sock.recv(4096)
        if not chunk:
            raise RuntimeError("Connection closed before headers were received")
        buffer += chunk
    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode().split("\r\n")
    status_line = header_lines[0]
    headers = _parse_headers(header_lines[1:])
    content_length = int(headers.get("content-length", "0"))
    while len(remainder) < content_length:
        chunk = sock.recv(4096)
        if not chunk:
            raise RuntimeError("Connection closed before body completed")
        remainder += chunk
    return RawHttpResponse(status_line, headers, remainder[:content_length])


def _parse_headers(lines: List[str]) -> Dict[str, str]:
    """Convert header lines into a normalized dictionary."""

    parsed: Dict[str, str] = {}
    for line in lines:
        if ": " not in line:
            continue
        name, value = line.split(": ", 1)
        parsed[name.lower()] = value
    return parsed
