"""TLS-terminated HTTP server with graceful shutdown."""

import errno
import socket
import ssl
import threading
import time
from typing import Optional

from lite_idp.bootstrap.config import EffectiveConfig
from lite_idp.bootstrap.socket_factory import ListenError, create_server_socket
from lite_idp.domain.correlation_id import get_logger
from lite_idp.domain.http_types import Handler
from lite_idp.lifecycle.state import ServerLifecycle
from lite_idp.transport.worker import WorkerContext, handle_client

SERVER_LOGGER = get_logger("transport.server")

TRANSIENT_ACCEPT_ERRNOS = {
    errno.ECONNABORTED,
    errno.EINTR,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
    errno.EPROTO,
}
ACCEPT_BACKOFF_SECONDS = 0.05


class ServerClosed(Exception):
    """Raised by ``serve_forever`` once a requested shutdown has completed."""


class TlsHttpServer:
    """Accepts connections and hands each one to a worker thread."""

    def __init__(
        self,
        config: EffectiveConfig,
        handler: Handler,
        tls_context: ssl.SSLContext,
        lifecycle: Optional[ServerLifecycle] = None,
    ) -> None:
        self.config = config
        self.lifecycle = lifecycle if lifecycle is not None else ServerLifecycle()
        self._context = WorkerContext(
            handler=handler,
            tls_context=tls_context,
            lifecycle=self.lifecycle,
            socket_timeout=config.socket_timeout,
        )
        self._socket: Optional[socket.socket] = None
        # Past a bounded grace period leftover workers must not keep the process alive.
        self._detach_workers = config.shutdown_grace_seconds is not None
        self._socket_lock = threading.Lock()

    @property
    def server_address(self) -> tuple[str, int]:
        """Host and port the listener is bound to."""
        if self._socket is None:
            raise RuntimeError("server is not bound")
        address = self._socket.getsockname()
        return address[0], address[1]

    def bind(self) -> None:
        """Bind the listening socket and move the lifecycle to SERVING.

        Raises:
            ListenError: the configured address cannot be bound.
        """
        server_socket = create_server_socket(self.config)
        with self._socket_lock:
            self._socket = server_socket
        self.lifecycle.mark_serving()

    def shutdown(self) -> None:
        """Stop accepting connections; in-flight requests keep running."""
        self.lifecycle.begin_draining()

    def close(self) -> None:
        """Release the listening socket."""
        with self._socket_lock:
            server_socket, self._socket = self._socket, None
        if server_socket is not None:
            server_socket.close()

    def serve_forever(self) -> None:
        """Serve until ``shutdown`` is called.

        Always ends by raising: ServerClosed after a requested shutdown has
        drained, ListenError on a failure of the listening socket.
        """
        if self.lifecycle.should_stop():
            raise ServerClosed
        if self._socket is None:
            self.bind()

        try:
            self._accept_until_stopped()
        finally:
            self.close()

        grace = self.config.shutdown_grace_seconds
        SERVER_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "shutdown_grace_seconds": grace,
                "remaining_workers": self.lifecycle.active_worker_count(),
            },
        )
        if not self.lifecycle.wait_for_workers(grace):
            aborted = self.lifecycle.abort_connections()
            SERVER_LOGGER.warning(
                "Closed connections still open after the grace period",
                extra={"event": "connections_aborted", "remaining_workers": aborted},
            )
        raise ServerClosed

    def _accept_until_stopped(self) -> None:
        server_socket = self._socket
        assert server_socket is not None
        while not self.lifecycle.should_stop():
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                continue
            except OSError as error:
                if self.lifecycle.should_stop():
                    return
                if error.errno not in TRANSIENT_ACCEPT_ERRNOS:
                    raise ListenError(f"accept failed: {error}") from error
                SERVER_LOGGER.error(
                    "Socket accept failed",
                    extra={"event": "accept_error", "error_type": type(error).__name__},
                )
                time.sleep(ACCEPT_BACKOFF_SECONDS)
                continue

            # A connection accepted after the stop request is still served, with
            # Connection: close.
            thread = threading.Thread(
                target=handle_client,
                args=(client_socket, client_address[:2], self._context),
                daemon=self._detach_workers,
            )
            self.lifecycle.register_worker(thread, client_socket)
            thread.start()
