from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Callable

from ..core_definitions import HISTORY_CAPACITY, ChangeKind, InboundMessage
from .logger import logger

if TYPE_CHECKING:
    from .change_guard import ChangeGuard

MessageListener = Callable[[InboundMessage], None]


class HistoryBuffer:
    """Messages in arrival order, bounded at a fixed capacity. The oldest message is evicted first."""

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        self._messages: deque[InboundMessage] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._messages.maxlen  # type: ignore[return-value]

    def append(self, message: InboundMessage) -> None:
        self._messages.append(message)

    def clear(self) -> None:
        self._messages.clear()

    def snapshot(self, topic: str | None = None) -> list[InboundMessage]:
        """Copy of the buffer, optionally only the messages whose topic equals `topic`."""
        if topic is None:
            return list(self._messages)
        return [message for message in self._messages if message.topic == topic]

    def __len__(self) -> int:
        return len(self._messages)


class MessageDispatcher:
    """Routes every inbound message to the global history and to per-topic listeners.

    Topics are matched by exact string equality; wildcard filters are not interpreted.
    Listener registration is driven by the SubscriptionRegistry, which attaches and detaches
    listeners together with changes to its acknowledged set.
    """

    def __init__(self, guard: ChangeGuard) -> None:
        self._guard = guard
        self.history = HistoryBuffer()
        self._listeners: dict[str, list[MessageListener]] = {}

    def add_listener(self, topic: str, listener: MessageListener) -> None:
        with self._guard:
            self._listeners.setdefault(topic, []).append(listener)

    def remove_listeners(self, topic: str) -> None:
        with self._guard:
            self._listeners.pop(topic, None)

    def clear_listeners(self) -> None:
        with self._guard:
            self._listeners.clear()

    def listener_count(self, topic: str) -> int:
        with self._guard:
            return len(self._listeners.get(topic, ()))

    def dispatch(self, topic: str, payload: bytes) -> InboundMessage:
        """Record a message from the broker and hand it to the listeners of its topic.

        Listeners are invoked in the order they were added, outside of the session lock.
        A listener raising does not prevent the remaining listeners from running.
        """
        with self._guard:
            message = InboundMessage(topic=topic, payload=payload)
            self.history.append(message)
            listeners = list(self._listeners.get(topic, ()))
            self._guard.changed(ChangeKind.HISTORY)
        logger.debug('Received %d bytes on %s (%d listeners)', len(payload), topic, len(listeners))
        for listener in listeners:
            try:
                listener(message)
            except Exception:  # noqa: BLE001
                logger.exception('Message listener for topic %s raised', topic)
        return message

    def messages(self, topic: str | None = None) -> list[InboundMessage]:
        with self._guard:
            return self.history.snapshot(topic)

    def clear_history(self) -> None:
        with self._guard:
            if len(self.history):
                self.history.clear()
                self._guard.changed(ChangeKind.HISTORY)
