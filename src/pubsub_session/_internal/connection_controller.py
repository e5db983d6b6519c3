from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from ..core_definitions import ChangeKind, ConnectionState
from ..exceptions import DisconnectedError, TransportError
from .logger import logger
from .transport.transport import TransportEvent, TransportEventKind

if TYPE_CHECKING:
    from ..config import ConnectionConfig
    from .change_guard import ChangeGuard
    from .dispatcher import MessageDispatcher
    from .pending import PendingOperations
    from .transport.transport import Transport, TransportHandle

StateListener = Callable[[ConnectionState, ConnectionState], None]
"""Internal hook, called with (previous, current) while the session guard is held."""


class ConnectionController:
    """Owns the single logical broker connection and drives the connection state machine.

    Transitions are only ever triggered by events of the active transport handle, or by explicit
    connect()/disconnect() calls. Connection failures are reported through the state, never raised.
    Retries and backoff belong to the transport, this class only reflects what the transport reports.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        transport: Transport,
        guard: ChangeGuard,
        dispatcher: MessageDispatcher,
        operations: PendingOperations,
    ) -> None:
        self._config = config
        self._transport = transport
        self._guard = guard
        self._dispatcher = dispatcher
        self._operations = operations

        self._state = ConnectionState.DISCONNECTED
        self._handle: TransportHandle | None = None
        self._state_listeners: list[StateListener] = []
        self._teardown_listeners: list[Callable[[], None]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def handle(self) -> TransportHandle | None:
        return self._handle

    def ready_handle(self) -> TransportHandle | None:
        """The active handle if operations may be issued on it right now, None otherwise."""
        with self._guard:
            if self._handle is None or not self.is_connected:
                return None
            return self._handle

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def add_teardown_listener(self, listener: Callable[[], None]) -> None:
        """Called (with the guard held) when disconnect() tears the session down."""
        self._teardown_listeners.append(listener)

    def connect(self) -> None:
        """Start connecting, returns immediately.

        No-op if a connection attempt is already in flight or established.
        """
        with self._guard:
            if self._handle is not None:
                logger.debug('connect() ignored, connection already active (state=%s)', self._state.value)
                return
            self._transition(ConnectionState.CONNECTING)
            # the guard is held while opening, so early events from the new handle wait until it is registered
            try:
                self._handle = self._transport.open(self._config, self._on_transport_event)
            except TransportError as e:
                logger.error('Unable to open a connection to %s: %s', self._config.url, e)
                self._transition(ConnectionState.ERROR)

    def disconnect(self) -> None:
        """Tear down the connection: force-close the handle, reject in-flight operations, clear history and subscriptions.

        Idempotent when already disconnected.
        """
        with self._guard:
            handle, self._handle = self._handle, None
            if handle is None and self._state is ConnectionState.DISCONNECTED:
                return
            self._transition(ConnectionState.DISCONNECTED)
            for teardown in self._teardown_listeners:
                teardown()
            self._dispatcher.clear_history()
            abandoned = self._operations.drain()
        # rejected before closing, so completions flushed by close() find them already resolved
        for operation in abandoned:
            operation.fail(
                DisconnectedError(f'{operation.kind.value} abandoned, session was disconnected')
            )
        if handle is not None:
            # outside of the guard, the transport thread may still be delivering events
            handle.close(force=True)
            logger.info('Disconnected from %s', self._config.url)

    def _on_transport_event(self, handle: TransportHandle, event: TransportEvent) -> None:
        """Single entry point for everything the transport reports."""
        if event.kind is TransportEventKind.MESSAGE:
            with self._guard:
                current = handle is self._handle
            if current:
                self._dispatcher.dispatch(event.topic or '', event.payload or b'')
            return

        with self._guard:
            if handle is not self._handle:
                logger.debug('Ignoring %s event from a closed connection', event.kind.value)
                return
            if event.kind is TransportEventKind.CONNECT:
                logger.info('Connected to %s', self._config.url)
                self._transition(ConnectionState.CONNECTED)
            elif event.kind is TransportEventKind.ERROR:
                logger.warning('Connection error from %s: %s', self._config.url, event.error)
                self._transition(ConnectionState.ERROR)
            elif event.kind is TransportEventKind.CLOSE:
                if self._state in (ConnectionState.CONNECTED, ConnectionState.ERROR):
                    self._transition(ConnectionState.DISCONNECTED)
            elif event.kind is TransportEventKind.RECONNECTING:
                self._transition(ConnectionState.RECONNECTING)
            elif event.kind is TransportEventKind.OFFLINE:
                self._transition(ConnectionState.OFFLINE)

    def _transition(self, state: ConnectionState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        logger.info('Connection state %s -> %s', previous.value, state.value)
        self._guard.changed(ChangeKind.STATE)
        for listener in self._state_listeners:
            listener(previous, state)
