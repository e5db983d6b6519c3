"""Public exceptions.

None of these are raised across the public API of the session; they are delivered
as the failure branch of an operation's future (and its optional callback).
Connection-level failures are never raised, they are reported through the session state.
"""

from __future__ import annotations

from typing import Any


class PubSubSessionError(Exception):
    """Generic marker for pubsub-session specific exceptions."""


class NotReadyError(PubSubSessionError):
    """An operation was attempted while the session was not connected.

    The transport is never contacted when this is reported.
    """


class TransportError(PubSubSessionError):
    """Wraps whatever the underlying connection layer reported for a connect/publish/subscribe failure."""

    def __init__(self, message: str, reason_code: Any = None) -> None:
        """Constructor.

        Params:
          message: human readable description
          reason_code: protocol-level reason code, if the broker provided one
        """
        super().__init__(message)
        self.reason_code = reason_code


class DisconnectedError(PubSubSessionError):
    """An in-flight operation was abandoned because the session was explicitly disconnected."""
