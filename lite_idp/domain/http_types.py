"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes
    version: str = "HTTP/1.1"
    target: str = ""
    client_address: Optional[tuple[str, int]] = None

    @property
    def client_host(self) -> str:
        """Return the remote host, or ``-`` when unknown."""
        if self.client_address is None:
            return "-"
        return self.client_address[0]


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_line: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    close_connection: bool = False

    @property
    def status_code(self) -> int:
        """Numeric status parsed from the status line."""
        return int(self.status_line.split(" ", 2)[1])


Handler = Callable[[HttpRequest], HttpResponse]


def should_close(headers: dict[str, str], version: str = "HTTP/1.1") -> bool:
    """Determine whether the connection should be closed after responding."""
    connection = headers.get("connection", "").lower()
    if version == "HTTP/1.0":
        return connection != "keep-alive"
    return connection == "close"
