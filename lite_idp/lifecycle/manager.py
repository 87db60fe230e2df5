"""Start the TLS listener and stop it gracefully on an interrupt."""

import threading
from typing import Optional

from lite_idp.application.contract import ApplicationService
from lite_idp.bootstrap.config import EffectiveConfig
from lite_idp.bootstrap.socket_factory import build_tls_context
from lite_idp.domain.correlation_id import get_logger
from lite_idp.domain.http_types import Handler
from lite_idp.lifecycle.signals import InterruptNotifier
from lite_idp.lifecycle.state import LifecycleError, ServerLifecycle
from lite_idp.pipeline.access_log import access_log
from lite_idp.security.hsts import hsts
from lite_idp.transport.server import ServerClosed, TlsHttpServer

MANAGER_LOGGER = get_logger("lifecycle.manager")


def build_handler_stack(handler: Handler) -> Handler:
    """Access logging outermost, HSTS next, the application handler at the core."""
    return access_log(hsts(handler))


class ServerLifecycleManager:
    """Runs one server from startup to a clean or fatal stop."""

    def __init__(
        self,
        config: EffectiveConfig,
        service: ApplicationService,
        notifier: Optional[InterruptNotifier] = None,
        lifecycle: Optional[ServerLifecycle] = None,
    ) -> None:
        self.config = config
        self.service = service
        self.notifier = notifier if notifier is not None else InterruptNotifier()
        self.lifecycle = lifecycle if lifecycle is not None else ServerLifecycle()
        self.server: Optional[TlsHttpServer] = None
        self._started = False
        self._ready = threading.Event()

    def wait_until_serving(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener is bound, for callers on other threads."""
        return self._ready.wait(timeout)

    def run(self) -> None:
        """Serve until an interrupt arrives.

        Returns normally after a clean shutdown. Failures building the
        application handler propagate unchanged; TLS and bind failures raise
        ListenError.
        """
        if self._started:
            raise LifecycleError("a lifecycle manager runs only once")
        self._started = True

        self.notifier.register()
        try:
            self._serve()
        finally:
            self.notifier.close()
            self.notifier.restore()
            if self.server is not None:
                self.server.close()
            self.lifecycle.mark_stopped()

    def _serve(self) -> None:
        components = self.service.build()
        handler = build_handler_stack(components.handler)
        tls_context = build_tls_context(self.config, components.trust)

        server = TlsHttpServer(self.config, handler, tls_context, self.lifecycle)
        self.server = server
        server.bind()

        watcher = threading.Thread(
            target=self._await_interrupt,
            args=(server,),
            name="interrupt-watcher",
            daemon=True,
        )
        watcher.start()

        host, port = server.server_address
        MANAGER_LOGGER.info(
            f"listening for connections on {self.config.listen_address}",
            extra={
                "event": "server_listening",
                "address": f"{host}:{port}",
                "server_name": self.config.server_name,
                "entity_id": self.config.entity_id,
            },
        )
        self._ready.set()
        try:
            server.serve_forever()
        except ServerClosed:
            MANAGER_LOGGER.info(
                "Server shutdown cleanly", extra={"event": "server_stopped"}
            )

    def _await_interrupt(self, server: TlsHttpServer) -> None:
        signum = self.notifier.wait()
        if signum is None:
            return
        MANAGER_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "signal_received", "signal": signum},
        )
        server.shutdown()
