"""Server lifecycle state management."""

import enum
import socket
import threading
import time
from typing import Optional

from lite_idp.domain.correlation_id import get_logger

LIFECYCLE_LOGGER = get_logger("lifecycle")


class LifecycleError(Exception):
    """Raised on an illegal lifecycle transition."""


class LifecycleState(enum.Enum):
    STARTING = "starting"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


_TRANSITIONS = {
    LifecycleState.STARTING: {LifecycleState.SERVING, LifecycleState.STOPPED},
    LifecycleState.SERVING: {LifecycleState.SHUTTING_DOWN, LifecycleState.STOPPED},
    LifecycleState.SHUTTING_DOWN: {LifecycleState.STOPPED},
    LifecycleState.STOPPED: set(),
}


class ServerLifecycle:
    """Tracks the server state machine and the worker threads it must drain."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = LifecycleState.STARTING
        self._stop_event = threading.Event()
        self._workers: dict[threading.Thread, Optional[socket.socket]] = {}

    @property
    def state(self) -> LifecycleState:
        with self._lock:
            return self._state

    def transition(self, new_state: LifecycleState) -> None:
        """Move to ``new_state``, raising LifecycleError if it is not reachable."""
        with self._lock:
            if new_state not in _TRANSITIONS[self._state]:
                raise LifecycleError(
                    f"cannot move from {self._state.value} to {new_state.value}"
                )
            self._state = new_state
            if new_state in (LifecycleState.SHUTTING_DOWN, LifecycleState.STOPPED):
                self._stop_event.set()
        LIFECYCLE_LOGGER.debug(
            "Lifecycle transition",
            extra={"event": "lifecycle_transition", "state": new_state.value},
        )

    def mark_serving(self) -> None:
        self.transition(LifecycleState.SERVING)

    def mark_stopped(self) -> None:
        """Move to STOPPED; a no-op when already stopped."""
        with self._lock:
            if self._state is LifecycleState.STOPPED:
                return
        self.transition(LifecycleState.STOPPED)

    def begin_draining(self) -> bool:
        """Move SERVING to SHUTTING_DOWN.

        Returns False when draining had already begun or the server never
        reached SERVING.
        """
        with self._lock:
            if self._state is not LifecycleState.SERVING:
                return False
        try:
            self.transition(LifecycleState.SHUTTING_DOWN)
        except LifecycleError:
            return False
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown", extra={"event": "shutdown_started"}
        )
        return True

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        return self._stop_event.is_set()

    def register_worker(
        self, thread: threading.Thread, connection: Optional[socket.socket] = None
    ) -> None:
        """Track a worker thread and the client socket it serves."""
        with self._lock:
            self._workers[thread] = connection

    def attach_connection(
        self, thread: threading.Thread, connection: socket.socket
    ) -> None:
        """Swap in the socket a tracked worker now reads from, e.g. after the handshake."""
        with self._lock:
            if thread in self._workers:
                self._workers[thread] = connection

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Remove a worker thread from tracking."""
        with self._lock:
            self._workers.pop(thread, None)

    def active_worker_count(self) -> int:
        """Return the number of tracked worker threads still running."""
        with self._lock:
            return sum(1 for worker in self._workers if worker.is_alive())

    def abort_connections(self) -> int:
        """Shut down the sockets of workers still running; returns how many."""
        with self._lock:
            connections = [
                connection
                for worker, connection in self._workers.items()
                if worker.is_alive() and connection is not None
            ]
        for connection in connections:
            try:
                connection.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        return len(connections)

    def wait_for_workers(self, timeout: Optional[float] = None) -> bool:
        """Wait for all worker threads to complete.

        With ``timeout`` of None the wait is unbounded. Returns False when the
        timeout elapsed with workers still running.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                self._workers = {
                    worker: connection
                    for worker, connection in self._workers.items()
                    if worker.is_alive()
                }
                active_workers = list(self._workers)
            if not active_workers:
                return True
            if deadline is None:
                for worker in active_workers:
                    worker.join(timeout=0.1)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break
