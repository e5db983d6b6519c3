from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence

if TYPE_CHECKING:
    from ...config import ConnectionConfig
    from ...core_definitions import PublishOptions


class TransportEventKind(str, Enum):
    CONNECT = 'connect'
    ERROR = 'error'
    CLOSE = 'close'
    RECONNECTING = 'reconnecting'
    OFFLINE = 'offline'
    MESSAGE = 'message'


@dataclass(frozen=True)
class TransportEvent:
    """A single lifecycle or data event emitted by an open transport handle.

    Only MESSAGE events carry a topic and payload, only ERROR events carry an error.
    """

    kind: TransportEventKind
    error: Optional[Exception] = None  # noqa: FA100
    topic: Optional[str] = None  # noqa: FA100
    payload: Optional[bytes] = None  # noqa: FA100


TransportListener = Callable[['TransportHandle', TransportEvent], None]
"""Receives every event of a handle. The handle is passed so that events from a stale handle can be told apart."""

Completion = Callable[[Optional[Exception]], None]
"""Called exactly once with None on success, or the failure reported by the transport."""


class TransportHandle(Protocol):
    """An open connection attempt to a broker.

    The transport library owns retries and backoff for the handle; the session only reflects the events it reports.
    """

    def close(self, force: bool) -> None:
        """Close the connection and stop any reconnection attempts.

        Args:
            force: if True, do not wait for in-flight messages to be flushed.
        """
        ...

    def publish(
        self, topic: str, payload: bytes, options: PublishOptions, completion: Completion
    ) -> None:
        """Publish a payload on a topic.

        Args:
            topic: exact topic to publish on
            payload: raw message body
            options: per-message transport options
            completion: called once the transport has finished with the message
        """
        ...

    def subscribe(self, topics: Sequence[str], completion: Completion) -> None:
        """Send a single subscribe request for all topics.

        Args:
            topics: topics to subscribe to
            completion: called once the broker acknowledged (or rejected) the request
        """
        ...

    def unsubscribe(self, topics: Sequence[str], completion: Completion) -> None:
        """Send a single unsubscribe request for all topics.

        Args:
            topics: topics to stop listening to
            completion: called once the broker acknowledged (or rejected) the request
        """
        ...


class Transport(Protocol):
    """Factory for transport handles. Abstracts the wire protocol away from the session."""

    def open(self, config: ConnectionConfig, listener: TransportListener) -> TransportHandle:
        """Start connecting to the broker described by config. Must not block on the network.

        Raises:
            TransportError: the configuration cannot be used by this transport at all.
        """
        ...
