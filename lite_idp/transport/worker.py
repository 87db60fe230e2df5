"""Worker thread logic for handling individual client connections."""

import logging
import socket
import ssl
import threading
import time
from dataclasses import dataclass
from typing import Optional

from lite_idp.bootstrap.config import MAX_BODY_BYTES, SECURITY_HEADERS
from lite_idp.domain.correlation_id import clear_correlation_id, get_logger, request_scope
from lite_idp.domain.http_types import Handler, HttpRequest
from lite_idp.domain.response_builders import (
    bad_request_response,
    entity_too_large_response,
)
from lite_idp.lifecycle.state import ServerLifecycle
from lite_idp.pipeline.io import RequestEntityTooLarge, receive_request, send_response

WORKER_LOGGER = get_logger("transport.worker")

IDLE_POLL_SECONDS = 0.25
NEW_CONNECTION_DRAIN_SECONDS = 5.0


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    handler: Handler
    tls_context: ssl.SSLContext
    lifecycle: ServerLifecycle
    socket_timeout: float = 60.0


def _handshake(
    raw_socket: socket.socket, context: WorkerContext, client_addr_str: str
) -> Optional[ssl.SSLSocket]:
    try:
        return context.tls_context.wrap_socket(raw_socket, server_side=True)
    except (ssl.SSLError, OSError) as error:
        WORKER_LOGGER.warning(
            "TLS handshake failed",
            extra={
                "event": "tls_handshake_failed",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
        return None


def _await_request_start(
    client_socket: socket.socket,
    buffer: bytes,
    context: WorkerContext,
    idle: bool,
) -> Optional[bytes]:
    """Wait for the first bytes of the next request.

    ``idle`` marks a kept-alive connection that has already been served; it
    is closed as soon as the server begins draining. A fresh connection is
    still given up to NEW_CONNECTION_DRAIN_SECONDS after draining begins to
    send its first request. Returns None when the peer closed or the wait
    ran out.
    """
    if buffer:
        return buffer
    deadline = time.monotonic() + context.socket_timeout
    drain_deadline_set = False
    client_socket.settimeout(IDLE_POLL_SECONDS)
    try:
        while True:
            if context.lifecycle.should_stop():
                if idle:
                    return None
                if not drain_deadline_set:
                    deadline = min(
                        deadline, time.monotonic() + NEW_CONNECTION_DRAIN_SECONDS
                    )
                    drain_deadline_set = True
            try:
                chunk = client_socket.recv(4096)
            except socket.timeout:
                if time.monotonic() >= deadline:
                    return None
                continue
            return chunk or None
    finally:
        client_socket.settimeout(context.socket_timeout)


def _read_request(
    client_socket: socket.socket,
    buffer: bytes,
    client_address: tuple[str, int],
    client_addr_str: str,
) -> tuple[Optional[HttpRequest], bytes, bool]:
    """Read a request from the socket while enforcing size limits."""
    try:
        request, buffer = receive_request(client_socket, buffer, client_address)
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request size exceeded limit",
            extra={
                "event": "body_size_exceeded",
                "client": client_addr_str,
                "limit": MAX_BODY_BYTES,
            },
        )
        send_response(client_socket, entity_too_large_response(SECURITY_HEADERS))
        return None, b"", True
    except (ValueError, UnicodeDecodeError):
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client_addr_str},
        )
        send_response(client_socket, bad_request_response(None, SECURITY_HEADERS))
        return None, b"", True

    if request is None:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected during request",
                extra={"event": "client_disconnected", "client": client_addr_str},
            )
        return None, b"", True
    return request, buffer, False


def _serve_connection(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    client_addr_str: str,
    context: WorkerContext,
) -> None:
    buffer = b""
    served = 0
    while True:
        pending = _await_request_start(
            client_socket, buffer, context, idle=served > 0
        )
        if pending is None:
            return
        with request_scope():
            request, buffer, should_terminate = _read_request(
                client_socket, pending, client_address, client_addr_str
            )
            if should_terminate or request is None:
                return

            response = context.handler(request)
            if context.lifecycle.should_stop():
                response.close_connection = True
            send_response(client_socket, response)
            served += 1

        if response.close_connection:
            return


def handle_client(
    raw_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Complete the TLS handshake and serve requests until the connection closes."""
    current_thread = threading.current_thread()
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    raw_socket.settimeout(context.socket_timeout)
    client_socket: socket.socket = raw_socket

    try:
        tls_socket = _handshake(raw_socket, context, client_addr_str)
        if tls_socket is not None:
            client_socket = tls_socket
            context.lifecycle.attach_connection(current_thread, tls_socket)
            _serve_connection(client_socket, client_address, client_addr_str, context)
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    finally:
        try:
            client_socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass
        client_socket.close()
        context.lifecycle.cleanup_worker(current_thread)
        clear_correlation_id()
        WORKER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": client_addr_str},
        )
