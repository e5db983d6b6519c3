from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Sequence

from ..core_definitions import ChangeKind, ConnectionState, InboundMessage, OperationKind
from ..exceptions import DisconnectedError, NotReadyError, TransportError
from .dispatcher import HistoryBuffer
from .logger import logger
from .pending import rejected_operation

if TYPE_CHECKING:
    from concurrent.futures import Future

    from .change_guard import ChangeGuard
    from .connection_controller import ConnectionController
    from .dispatcher import MessageDispatcher, MessageListener
    from .pending import OperationCallback, PendingOperation, PendingOperations
    from .transport.transport import TransportHandle


def normalize_topics(topics: str | Iterable[str]) -> tuple[str, ...]:
    """Accept a single topic or an iterable of topics, drop duplicates but keep their order."""
    if isinstance(topics, str):
        topics = (topics,)
    normalized = tuple(dict.fromkeys(topics))
    if not normalized:
        msg = 'at least one topic is required'
        raise ValueError(msg)
    return normalized


class SubscriptionRegistry:
    """Tracks which topics the application wants (desired) and which the broker confirmed (acknowledged).

    desired survives reconnects, acknowledged is emptied every time the connection leaves the
    connected state. Whenever the connection becomes ready again, every desired topic which is not
    acknowledged is requested in a single subscribe call (reconciliation).

    Per-topic listeners on the MessageDispatcher exist exactly while a topic is acknowledged; they are
    attached and detached together with the acknowledged set, under the session guard.
    """

    def __init__(
        self,
        guard: ChangeGuard,
        controller: ConnectionController,
        dispatcher: MessageDispatcher,
        operations: PendingOperations,
        declared_topics: Iterable[str] = (),
    ) -> None:
        self._guard = guard
        self._controller = controller
        self._dispatcher = dispatcher
        self._operations = operations

        self._declared = tuple(dict.fromkeys(declared_topics))
        # dicts are used as insertion-ordered sets
        self._desired: dict[str, None] = dict.fromkeys(self._declared)
        self._acknowledged: dict[str, None] = {}

        self.subscription_history = HistoryBuffer()
        """Messages received on acknowledged topics only."""
        self._listeners: list[MessageListener] = [self._record_subscription_message]

        controller.add_state_listener(self._on_state_change)
        controller.add_teardown_listener(self.reset)

    # queries

    def is_subscribed(self, topic: str) -> bool:
        return topic in self._acknowledged

    @property
    def subscribed_topics(self) -> list[str]:
        with self._guard:
            return sorted(self._acknowledged)

    @property
    def desired_topics(self) -> list[str]:
        with self._guard:
            return sorted(self._desired)

    def subscription_messages(self, topic: str | None = None) -> list[InboundMessage]:
        with self._guard:
            return self.subscription_history.snapshot(topic)

    def clear_subscription_messages(self) -> None:
        with self._guard:
            if len(self.subscription_history):
                self.subscription_history.clear()
                self._guard.changed(ChangeKind.HISTORY)

    def add_listener(self, listener: MessageListener) -> None:
        """Invoke `listener` for every message on any acknowledged topic, now and after future subscribes."""
        with self._guard:
            self._listeners.append(listener)
            for topic in self._acknowledged:
                self._dispatcher.add_listener(topic, listener)

    # operations

    def subscribe(
        self, topics: str | Iterable[str], callback: OperationCallback | None = None
    ) -> Future[Any]:
        """Request a subscription for every topic. Resolves to the tuple of topics once the broker acknowledged them.

        The topics join the desired set right away and stay there even if the request fails,
        so the next reconnection retries them.
        """
        requested = normalize_topics(topics)
        with self._guard:
            handle = self._controller.ready_handle()
            if handle is not None:
                self._desired.update(dict.fromkeys(requested))
                operation = self._operations.track(OperationKind.SUBSCRIBE, requested, callback)
        if handle is None:
            logger.warning('Cannot subscribe to %s, session is not connected', list(requested))
            return rejected_operation(
                OperationKind.SUBSCRIBE,
                requested,
                NotReadyError('session is not connected'),
                callback,
            )
        self._send_subscribe(handle, operation)
        return operation.future

    def unsubscribe(
        self, topics: str | Iterable[str], callback: OperationCallback | None = None
    ) -> Future[Any]:
        """Stop listening on every topic. Resolves to the tuple of topics once the broker acknowledged the request.

        Topics which were never subscribed are sent along anyway, the broker ignores them.
        On failure neither set changes.
        """
        requested = normalize_topics(topics)
        with self._guard:
            handle = self._controller.ready_handle()
            if handle is not None:
                operation = self._operations.track(OperationKind.UNSUBSCRIBE, requested, callback)
        if handle is None:
            logger.warning('Cannot unsubscribe from %s, session is not connected', list(requested))
            return rejected_operation(
                OperationKind.UNSUBSCRIBE,
                requested,
                NotReadyError('session is not connected'),
                callback,
            )
        handle.unsubscribe(
            operation.topics,
            lambda error: self._on_unsubscribed(handle, operation, error),
        )
        return operation.future

    def reset(self) -> None:
        """Forget everything except the declared topics. Called when the session is torn down."""
        with self._guard:
            self._drop_acknowledged()
            self._desired = dict.fromkeys(self._declared)
            self.subscription_history.clear()
            self._dispatcher.clear_listeners()

    # internals

    def _send_subscribe(self, handle: TransportHandle, operation: PendingOperation) -> None:
        handle.subscribe(
            operation.topics,
            lambda error: self._on_subscribed(handle, operation, error),
        )

    def _on_state_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        if previous is ConnectionState.CONNECTED:
            self._drop_acknowledged()
        if current is ConnectionState.CONNECTED:
            self._reconcile()

    def _reconcile(self) -> None:
        handle = self._controller.handle
        missing = sorted(topic for topic in self._desired if topic not in self._acknowledged)
        if handle is None or not missing:
            return
        logger.info('Resubscribing to %s', missing)
        operation = self._operations.track(OperationKind.SUBSCRIBE, missing, self._on_reconciled)
        self._send_subscribe(handle, operation)

    @staticmethod
    def _on_reconciled(error: Exception | None) -> None:
        if isinstance(error, DisconnectedError):
            logger.debug('Automatic resubscribe abandoned: %s', error)
        elif error is not None:
            logger.error('Automatic resubscribe failed: %s', error)

    def _on_subscribed(
        self, handle: TransportHandle, operation: PendingOperation, error: Exception | None
    ) -> None:
        with self._guard:
            current = handle is self._controller.handle
            connected = self._controller.is_connected
            if error is None and current and connected:
                self._acknowledge(operation.topics)
        if error is not None:
            logger.warning('Subscribe to %s failed: %s', list(operation.topics), error)
            operation.complete(error)
        elif not current:
            operation.fail(DisconnectedError('session was disconnected before the broker answered'))
        elif not connected:
            operation.fail(TransportError('connection was lost before the subscription took effect'))
        else:
            logger.info('Subscribed to %s', list(operation.topics))
            operation.succeed(operation.topics)

    def _on_unsubscribed(
        self, handle: TransportHandle, operation: PendingOperation, error: Exception | None
    ) -> None:
        with self._guard:
            current = handle is self._controller.handle
            if error is None and current:
                for topic in operation.topics:
                    self._desired.pop(topic, None)
                self._release(operation.topics)
        if error is not None:
            logger.warning('Unsubscribe from %s failed: %s', list(operation.topics), error)
            operation.complete(error)
        elif not current:
            operation.fail(DisconnectedError('session was disconnected before the broker answered'))
        else:
            logger.info('Unsubscribed from %s', list(operation.topics))
            operation.succeed(operation.topics)

    def _acknowledge(self, topics: Sequence[str]) -> None:
        for topic in topics:
            # an unsubscribe may have overtaken this subscribe
            if topic in self._acknowledged or topic not in self._desired:
                continue
            self._acknowledged[topic] = None
            for listener in self._listeners:
                self._dispatcher.add_listener(topic, listener)
            self._guard.changed(ChangeKind.SUBSCRIPTIONS)

    def _release(self, topics: Iterable[str]) -> None:
        for topic in list(topics):
            if topic not in self._acknowledged:
                continue
            del self._acknowledged[topic]
            self._dispatcher.remove_listeners(topic)
            self._guard.changed(ChangeKind.SUBSCRIPTIONS)

    def _drop_acknowledged(self) -> None:
        self._release(self._acknowledged)

    def _record_subscription_message(self, message: InboundMessage) -> None:
        with self._guard:
            self.subscription_history.append(message)
            self._guard.changed(ChangeKind.HISTORY)
