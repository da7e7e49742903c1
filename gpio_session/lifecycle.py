"""Process termination hooks that return claimed lines to a safe state."""

from __future__ import annotations

from typing import Callable, Dict, List, Sequence
import atexit
import logging
import signal
import threading

from .session import GpioSession

LOGGER = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownGuard:
    """Release every claim on SIGINT/SIGTERM and at interpreter exit.

    After releasing, the guard raises ``KeyboardInterrupt`` for SIGINT and
    ``SystemExit(128 + signum)`` for other signals so the program unwinds as
    it would without the guard. Pass ``exit_on_signal=False`` to only release
    and run the callbacks (daemons that stop their own main loop).
    """

    def __init__(
        self,
        session: GpioSession,
        signals: Sequence[int] = DEFAULT_SIGNALS,
        *,
        exit_on_signal: bool = True,
        use_atexit: bool = True,
    ) -> None:
        self.session = session
        self._signals = tuple(signals)
        self._exit_on_signal = exit_on_signal
        self._use_atexit = use_atexit
        self._callbacks: List[Callable[[int], None]] = []
        self._previous: Dict[int, object] = {}
        self._installed = False

    def add_callback(self, callback: Callable[[int], None]) -> None:
        """Run callback(signum) after the claims have been released."""
        self._callbacks.append(callback)

    def install(self) -> "ShutdownGuard":
        if self._installed:
            return self
        if threading.current_thread() is threading.main_thread():
            for signum in self._signals:
                self._previous[signum] = signal.getsignal(signum)
                signal.signal(signum, self.handle_signal)
        else:
            LOGGER.warning("ShutdownGuard installed off the main thread; signal hooks skipped")
        if self._use_atexit:
            atexit.register(self._at_exit)
        self._installed = True
        return self

    def uninstall(self) -> None:
        if not self._installed:
            return
        for signum, previous in self._previous.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()
        if self._use_atexit:
            atexit.unregister(self._at_exit)
        self._installed = False

    def handle_signal(self, signum: int, _frame=None) -> None:
        LOGGER.warning("Received %s; releasing GPIO claims", signal.Signals(signum).name)
        self.session.release_all()
        for callback in list(self._callbacks):
            try:
                callback(signum)
            except Exception as exc:
                LOGGER.exception("Shutdown callback failed: %s", exc)
        if not self._exit_on_signal:
            return
        if signum == signal.SIGINT:
            raise KeyboardInterrupt
        raise SystemExit(128 + int(signum))

    def __enter__(self) -> "ShutdownGuard":
        return self.install()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.uninstall()
        return False

    def _at_exit(self) -> None:
        self.session.close()
