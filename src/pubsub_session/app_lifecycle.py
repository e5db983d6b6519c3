"""Optional lifecycle utilities for scripts which own their process.

A session should be disconnected when the application stops, so pending operations are rejected
and the broker connection is closed cleanly. If you embed a session into something which already
manages its own lifecycle (a web server, a GUI event loop...), call connect()/disconnect() from that
lifecycle instead and ignore this module.
"""

from __future__ import annotations

import signal
import sys
from threading import Event
from typing import TYPE_CHECKING, Any, Callable

from ._internal.logger import logger

if TYPE_CHECKING:
    from .session import PubSubSession


def _stop_signals() -> list[signal.Signals]:
    signals = [signal.SIGINT, signal.SIGTERM]
    if sys.platform != 'win32':
        signals += [signal.SIGHUP, signal.SIGQUIT]
    return signals


class SignalHandler:
    """Turns process stop signals into a flag a loop can poll or wait on.

    The handlers are installed by the constructor. restore() puts back whatever was installed before,
    so the handler can be used for a bounded part of a larger program.
    """

    def __init__(self, cleanup_callback: Callable[[int], None] | None = None) -> None:
        """Install handlers for SIGINT and SIGTERM, and SIGHUP/SIGQUIT outside of Windows.

        Parameters:
          cleanup_callback: optional, called with the signal number once a signal is caught.
        """
        self._exit = Event()
        self._cleanup_callback = cleanup_callback
        self._previous: dict[int, Any] = {}
        for signum in _stop_signals():
            self._previous[signum] = signal.signal(signum, self._on_signal_caught)

    def _on_signal_caught(self, signum: int, _: Any) -> None:
        logger.warning('shutting down and handling signal %d', signum)
        if self._cleanup_callback:
            self._cleanup_callback(signum)
        self._exit.set()

    def should_stop(self) -> bool:
        return self._exit.is_set()

    def stop(self) -> None:
        """Stop without an OS signal."""
        self._exit.set()

    def wait(self, amount: float) -> None:
        """Block for up to `amount` seconds, returning early once stopped."""
        self._exit.wait(amount)

    def restore(self) -> None:
        """Reinstall the handlers which were active before this one. Safe to call more than once."""
        previous, self._previous = self._previous, {}
        for signum, handler in previous.items():
            # None means the previous handler was not installed from Python
            signal.signal(signum, signal.SIG_DFL if handler is None else handler)


def default_session_lifecycle_loop(
    session: PubSubSession,
    delay: float = 30.0,
    post_startup_callback: Callable[[], None] | None = None,
    cleanup_callback: Callable[[int], None] | None = None,
    waiting_callback: Callable[[PubSubSession], None] | None = None,
) -> None:
    """Connect the session, block until the process is signalled, then disconnect it.

    The signal handlers which were active before the loop started are restored once it ends.

    Params:
      - session: the session to run
      - delay: how often the loop wakes up (default: 30 seconds)
      - post_startup_callback: called once, right after connect() was issued. The connection
        is usually not established yet at that point.
      - cleanup_callback: called with the signal number once a signal is caught, just before the loop ends.
      - waiting_callback: called with the session every <DELAY> seconds, handy for reporting state.
    """
    sighandler = SignalHandler(cleanup_callback=cleanup_callback)
    try:
        session.connect()
        if post_startup_callback:
            post_startup_callback()
        logger.debug('starting default session loop')
        while not sighandler.should_stop():
            sighandler.wait(delay)
            if waiting_callback:
                waiting_callback(session)
    finally:
        session.disconnect()
        sighandler.restore()
