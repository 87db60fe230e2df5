"""Single-slot interrupt notification."""

import queue
import signal
from typing import Optional


INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

_CLOSED = object()


class InterruptNotifier:
    """Delivers the first interrupt signal to one waiting thread.

    The slot holds one pending notification, so a signal that arrives before
    the waiter is scheduled is not lost. Later signals are dropped.
    """

    def __init__(self, signals: tuple[signal.Signals, ...] = INTERRUPT_SIGNALS) -> None:
        self._signals = signals
        self._slot: "queue.Queue[object]" = queue.Queue(maxsize=1)
        self._previous: dict[signal.Signals, object] = {}

    def register(self) -> None:
        """Install the signal handlers. Must be called from the main thread."""
        for signum in self._signals:
            self._previous[signum] = signal.signal(signum, self._handle_signal)

    def restore(self) -> None:
        """Reinstate the handlers that were active before ``register``."""
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def _handle_signal(self, signum: int, _frame) -> None:
        self.notify(signum)

    def notify(self, signum: int) -> bool:
        """Fill the slot with ``signum``; returns False if it was already full."""
        try:
            self._slot.put_nowait(signum)
        except queue.Full:
            return False
        return True

    def close(self) -> None:
        """Wake a waiter without a signal. No-op if a signal is already pending."""
        try:
            self._slot.put_nowait(_CLOSED)
        except queue.Full:
            pass

    def wait(self) -> Optional[int]:
        """Block until a signal arrives; returns None if closed first."""
        item = self._slot.get()
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]
