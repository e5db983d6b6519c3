"""Core enumerations and structures used throughout the session, its components, and its transports."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import Field
from pydantic.dataclasses import dataclass as pydantic_dataclass
from typing_extensions import Annotated

HISTORY_CAPACITY = 100
"""Maximum number of messages retained by a history buffer. The oldest message is evicted first."""


class ConnectionState(str, Enum):
    """Health of the single logical broker connection.

    There is no terminal state, the session can always go back to CONNECTING.
    """

    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    RECONNECTING = 'reconnecting'
    OFFLINE = 'offline'
    ERROR = 'error'


class ChangeKind(str, Enum):
    """What part of the session changed. Sent to every session observer."""

    STATE = 'state'
    SUBSCRIPTIONS = 'subscriptions'
    HISTORY = 'history'


class OperationKind(str, Enum):
    """Kind of an in-flight request against the broker."""

    PUBLISH = 'publish'
    SUBSCRIBE = 'subscribe'
    UNSUBSCRIBE = 'unsubscribe'


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class InboundMessage:
    """A message received from the broker. Immutable once created."""

    topic: str
    """
    The exact topic the broker delivered the message on.
    """

    payload: bytes
    """
    Raw message body.
    """

    received_at: datetime = field(default_factory=_utc_now)
    """
    UTC timestamp taken when the message reached the dispatcher.
    """

    @property
    def text(self) -> str:
        """The payload decoded as UTF-8, undecodable bytes are replaced."""
        return self.payload.decode('utf-8', errors='replace')


@pydantic_dataclass(frozen=True)
class PublishOptions:
    """Per-message options handed to the transport when publishing."""

    qos: Annotated[int, Field(ge=0, le=2)] = 0
    """
    Quality of service requested from the transport (default: 0). Acknowledgement flows for QoS 1/2 are left to the transport.
    """

    retain: bool = False
    """
    Ask the broker to retain the message for future subscribers (default: False)
    """
