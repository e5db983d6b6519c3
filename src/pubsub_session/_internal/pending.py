from __future__ import annotations

import threading
from concurrent.futures import Future, InvalidStateError
from typing import Any, Callable, Optional, Sequence

from ..core_definitions import OperationKind
from ..exceptions import PubSubSessionError, TransportError
from .logger import logger

OperationCallback = Callable[[Optional[Exception]], None]
"""Optional user callback of publish/subscribe/unsubscribe. Receives None on success, the failure otherwise."""


class PendingOperation:
    """An in-flight publish/subscribe/unsubscribe request.

    The returned future and the optional callback are both fed from a single completion path,
    so they always agree and are each resolved exactly once. Later resolutions are ignored.
    """

    def __init__(
        self,
        kind: OperationKind,
        topics: Sequence[str],
        callback: OperationCallback | None = None,
    ) -> None:
        self.kind = kind
        self.topics = tuple(topics)
        self.future: Future[Any] = Future()
        self._callback = callback
        self._resolved = False
        self._resolve_lock = threading.Lock()

    @property
    def resolved(self) -> bool:
        return self._resolved

    def succeed(self, value: Any = None) -> bool:
        return self._resolve(None, value)

    def fail(self, error: Exception) -> bool:
        return self._resolve(error, None)

    def complete(self, error: Exception | None, value: Any = None) -> bool:
        """Resolve from a transport completion.

        Anything the transport reports which is not one of our own errors gets wrapped in a TransportError.
        """
        if error is None:
            return self.succeed(value)
        if not isinstance(error, PubSubSessionError):
            wrapped = TransportError(str(error))
            wrapped.__cause__ = error
            error = wrapped
        return self.fail(error)

    def _resolve(self, error: Exception | None, value: Any) -> bool:
        with self._resolve_lock:
            if self._resolved:
                return False
            self._resolved = True
        try:
            if error is None:
                self.future.set_result(value)
            else:
                self.future.set_exception(error)
        except InvalidStateError:
            # the caller cancelled the future, the callback still gets the outcome
            pass
        if self._callback is not None:
            try:
                self._callback(error)
            except Exception:  # noqa: BLE001
                logger.exception('%s callback for %s raised', self.kind.value, list(self.topics))
        return True


class PendingOperations:
    """Tracks the in-flight operations of a session, so they can be abandoned on disconnect."""

    def __init__(self) -> None:
        self._operations: dict[int, PendingOperation] = {}
        self._lock = threading.Lock()

    def track(
        self,
        kind: OperationKind,
        topics: Sequence[str],
        callback: OperationCallback | None = None,
    ) -> PendingOperation:
        operation = PendingOperation(kind, topics, callback)
        key = id(operation)
        with self._lock:
            self._operations[key] = operation
        operation.future.add_done_callback(lambda _: self._forget(key))
        return operation

    def drain(self) -> list[PendingOperation]:
        """Stop tracking every operation and return the ones which are still unresolved."""
        with self._lock:
            operations = list(self._operations.values())
            self._operations.clear()
        return [op for op in operations if not op.resolved]

    def __len__(self) -> int:
        with self._lock:
            return len(self._operations)

    def _forget(self, key: int) -> None:
        with self._lock:
            self._operations.pop(key, None)


def rejected_operation(
    kind: OperationKind,
    topics: Sequence[str],
    error: Exception,
    callback: OperationCallback | None = None,
) -> Future[Any]:
    """Build an already-failed operation, used when a request is refused before reaching the transport."""
    operation = PendingOperation(kind, topics, callback)
    operation.fail(error)
    return operation.future
