from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Callable

from .logger import logger

if TYPE_CHECKING:
    from ..core_definitions import ChangeKind

SessionObserver = Callable[['ChangeKind'], None]


class ChangeGuard:
    """Single-writer discipline for one session.

    Every mutation of session state (connection state, subscription sets, history, pending operations)
    happens while holding this re-entrant lock. Changes are recorded with changed() and observers are
    only told about them once the outermost holder releases the lock, so observers never run while
    the session is locked.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._local = threading.local()
        self._changes: list[ChangeKind] = []
        self._observers: list[SessionObserver] = []

    def __enter__(self) -> ChangeGuard:
        self._lock.acquire()
        self._local.depth = getattr(self._local, 'depth', 0) + 1
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._local.depth -= 1
        changes: list[ChangeKind] = []
        observers: list[SessionObserver] = []
        if self._local.depth == 0:
            changes, self._changes = self._changes, []
            observers = list(self._observers)
        self._lock.release()
        # collapse duplicates but keep the order changes happened in
        for kind in dict.fromkeys(changes):
            for observer in observers:
                try:
                    observer(kind)
                except Exception:  # noqa: BLE001
                    logger.exception('session observer raised on %s change', kind.value)

    def changed(self, kind: ChangeKind) -> None:
        """Record a change. Must be called while holding the guard."""
        self._changes.append(kind)

    def add_observer(self, observer: SessionObserver) -> Callable[[], None]:
        """Register an observer, returns a function which unregisters it."""
        with self._lock:
            self._observers.append(observer)

        def _remove() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _remove
