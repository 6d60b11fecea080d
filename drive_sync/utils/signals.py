"""Cooperative cancellation for interrupt signals.

SIGINT and SIGTERM flip a CancellationToken and raise OperationCancelled
in the main thread. Long sequences (discovery, estimation, confirmation,
execution per backup) also poll the token between steps, so callers that
cancel programmatically get the same behavior.
"""

import logging
import signal
import threading
from typing import Dict, Iterable, Optional

from drive_sync.errors import OperationCancelled

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """Thread-safe cancellation flag."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelled(f"Operation interrupted: {self.reason}")


def install_signal_handlers(
    token: CancellationToken,
    signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
) -> Dict[signal.Signals, object]:
    """Route interrupt signals into the token.

    Must be called from the main thread.

    Returns:
        Mapping of signal to previous handler, for restore_signal_handlers()
    """
    previous: Dict[signal.Signals, object] = {}

    def _handler(signum, frame):
        name = signal.Signals(signum).name
        logger.info(f"Received {name}, stopping")
        token.cancel(name)
        raise OperationCancelled(f"Interrupted by {name}")

    for sig in signals:
        previous[sig] = signal.signal(sig, _handler)
    return previous


def restore_signal_handlers(previous: Dict[signal.Signals, object]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)
