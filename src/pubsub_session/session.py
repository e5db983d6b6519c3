"""The PubSubSession is the only object applications need to interact with.

It keeps one logical connection to a broker, remembers the topics the application wants to be subscribed to
(and resubscribes them after every reconnect), keeps a bounded history of everything received, and turns
publish/subscribe/unsubscribe into futures.

Nothing is ever raised across this API because of the broker: connection problems show up in `state`,
and operation problems are the failure branch of the returned future (and of the optional callback).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Iterable

from typing_extensions import final

from ._internal.change_guard import ChangeGuard
from ._internal.connection_controller import ConnectionController
from ._internal.dispatcher import MessageDispatcher
from ._internal.logger import logger
from ._internal.pending import PendingOperations, rejected_operation
from ._internal.serialization import serialize_message
from ._internal.subscription_registry import SubscriptionRegistry
from ._internal.transport.mqtt_transport import MQTTTransport
from .config import ConnectionConfig
from .core_definitions import ChangeKind, ConnectionState, InboundMessage, OperationKind, PublishOptions
from .exceptions import NotReadyError

if TYPE_CHECKING:
    from concurrent.futures import Future

    from ._internal.pending import OperationCallback
    from ._internal.transport.transport import Transport


@final
class PubSubSession:
    """Client-side session against a single publish/subscribe broker.

    Typical usage:

        session = PubSubSession(ConnectionConfig(url='mqtt://localhost:1883'), topics=['sensors/1'], on_message=print)
        session.connect()
        ...
        session.publish('commands/1', {'power': True}).result(timeout=5)
        session.disconnect()

    connect() returns immediately; use add_observer() or poll `state` to follow the connection.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        topics: Iterable[str] = (),
        on_message: Callable[[InboundMessage], None] | None = None,
        transport: Transport | None = None,
    ) -> None:
        """Build the session. Does not connect.

        Parameters:
          config: broker connection configuration
          topics: topics which should always be subscribed while connected. They are (re)subscribed
            automatically every time the connection becomes ready.
          on_message: called with every message received on a subscribed topic
          transport: transport implementation, defaults to the paho-mqtt based transport
        """
        # in case the config was built with "ConnectionConfig.model_construct()" to skip validation
        self._config = ConnectionConfig.model_validate(config)
        self._guard = ChangeGuard()
        self._operations = PendingOperations()
        self._dispatcher = MessageDispatcher(self._guard)
        self._controller = ConnectionController(
            self._config,
            transport if transport is not None else MQTTTransport(),
            self._guard,
            self._dispatcher,
            self._operations,
        )
        self._registry = SubscriptionRegistry(
            self._guard,
            self._controller,
            self._dispatcher,
            self._operations,
            declared_topics=topics,
        )
        if on_message is not None:
            self._registry.add_listener(on_message)

    # connection

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._controller.state

    @property
    def is_connected(self) -> bool:
        """True if and only if the state is CONNECTED."""
        return self._controller.is_connected

    def connect(self) -> None:
        """Start connecting to the broker. Returns immediately, no-op if already connecting or connected."""
        self._controller.connect()

    def disconnect(self) -> None:
        """Force-close the connection, reject in-flight operations with DisconnectedError, clear history and subscriptions.

        Topics given to the constructor are kept and will be subscribed again on the next connect().
        """
        self._controller.disconnect()

    # operations

    def publish(
        self,
        topic: str,
        message: Any,
        options: PublishOptions | None = None,
        callback: OperationCallback | None = None,
    ) -> Future[None]:
        """Publish a message. Anything which is not str/bytes is sent as JSON.

        Params:
          topic: exact topic to publish on
          message: message body
          options: QoS/retain flags passed to the transport
          callback: optional, called once with None or the failure, consistently with the returned future

        Returns:
          A future resolving to None once the transport is done with the message. It fails with NotReadyError
          (without contacting the transport) when not connected, or with TransportError.

        Raises:
          PydanticSerializationError: a connected session could not encode the message as JSON
        """
        with self._guard:
            handle = self._controller.ready_handle()
            if handle is not None:
                # only serialized once the session is ready, a refused publish never raises
                payload = serialize_message(message)
                operation = self._operations.track(OperationKind.PUBLISH, (topic,), callback)
        if handle is None:
            logger.warning('Cannot publish to %s, session is not connected', topic)
            return rejected_operation(
                OperationKind.PUBLISH, (topic,), NotReadyError('session is not connected'), callback
            )
        handle.publish(topic, payload, options or PublishOptions(), operation.complete)
        logger.debug('Publishing %d bytes to %s', len(payload), topic)
        return operation.future

    def subscribe(
        self, topics: str | Iterable[str], callback: OperationCallback | None = None
    ) -> Future[tuple[str, ...]]:
        """Subscribe to one or more topics. Resolves to the tuple of topics once acknowledged.

        Requested topics are remembered even if the request fails, and retried after the next reconnect.
        """
        return self._registry.subscribe(topics, callback)

    def unsubscribe(
        self, topics: str | Iterable[str], callback: OperationCallback | None = None
    ) -> Future[tuple[str, ...]]:
        """Unsubscribe from one or more topics. Resolves to the tuple of topics once acknowledged."""
        return self._registry.unsubscribe(topics, callback)

    def is_subscribed(self, topic: str) -> bool:
        """Whether the broker currently acknowledges a subscription on exactly this topic."""
        return self._registry.is_subscribed(topic)

    @property
    def subscribed_topics(self) -> list[str]:
        return self._registry.subscribed_topics

    @property
    def subscription_count(self) -> int:
        return len(self._registry.subscribed_topics)

    # history

    def messages(self, topic: str | None = None) -> list[InboundMessage]:
        """Every message received (up to the last 100) in arrival order, optionally only those of one topic."""
        return self._dispatcher.messages(topic)

    @property
    def message_count(self) -> int:
        return len(self._dispatcher.messages())

    def clear_history(self) -> None:
        self._dispatcher.clear_history()

    def subscription_messages(self, topic: str | None = None) -> list[InboundMessage]:
        """Like messages(), but only messages received on a subscribed topic."""
        return self._registry.subscription_messages(topic)

    def clear_subscription_messages(self) -> None:
        self._registry.clear_subscription_messages()

    # notification

    def add_message_callback(self, callback: Callable[[InboundMessage], None]) -> None:
        """Call `callback` with every message received on a subscribed topic."""
        self._registry.add_listener(callback)

    def add_observer(self, observer: Callable[[ChangeKind], None]) -> Callable[[], None]:
        """Be told whenever the state, the subscribed topics, or the history change.

        Observers are never called while the session is locked, so they may freely query the session.

        Returns:
          a function which removes the observer again
        """
        return self._guard.add_observer(observer)
