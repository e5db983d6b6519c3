import pytest
from pubsub_session import ChangeKind, ConnectionConfig, ConnectionState, DisconnectedError, TransportError
from pubsub_session._internal.change_guard import ChangeGuard
from pubsub_session._internal.connection_controller import ConnectionController
from pubsub_session._internal.dispatcher import MessageDispatcher
from pubsub_session._internal.pending import PendingOperations
from pubsub_session._internal.transport.transport import TransportEventKind
from pubsub_session.core_definitions import OperationKind

from tests.fixtures.fake_transport import FakeTransport

# HELPERS #####################


def make_controller(transport=None):
    guard = ChangeGuard()
    dispatcher = MessageDispatcher(guard)
    operations = PendingOperations()
    controller = ConnectionController(
        ConnectionConfig(url='broker://x'),
        transport or FakeTransport(),
        guard,
        dispatcher,
        operations,
    )
    return controller, guard, dispatcher, operations


# TESTS #####################


def test_initial_state():
    controller, *_ = make_controller()
    assert controller.state is ConnectionState.DISCONNECTED
    assert controller.is_connected is False
    assert controller.handle is None
    assert controller.ready_handle() is None


def test_connect_then_connected():
    transport = FakeTransport()
    controller, guard, *_ = make_controller(transport)
    changes = []
    guard.add_observer(changes.append)

    controller.connect()
    assert controller.state is ConnectionState.CONNECTING
    assert controller.ready_handle() is None
    assert transport.handle.config.url == 'broker://x'

    transport.handle.emit(TransportEventKind.CONNECT)
    assert controller.state is ConnectionState.CONNECTED
    assert controller.ready_handle() is transport.handle
    assert changes == [ChangeKind.STATE, ChangeKind.STATE]


def test_connect_is_idempotent():
    transport = FakeTransport()
    controller, *_ = make_controller(transport)
    controller.connect()
    controller.connect()
    transport.handle.emit(TransportEventKind.CONNECT)
    controller.connect()
    assert len(transport.handles) == 1
    assert controller.state is ConnectionState.CONNECTED


@pytest.mark.parametrize(
    ('events', 'expected'),
    [
        ([TransportEventKind.CONNECT], ConnectionState.CONNECTED),
        ([TransportEventKind.ERROR], ConnectionState.ERROR),
        ([TransportEventKind.ERROR, TransportEventKind.CLOSE], ConnectionState.DISCONNECTED),
        ([TransportEventKind.CONNECT, TransportEventKind.CLOSE], ConnectionState.DISCONNECTED),
        (
            [TransportEventKind.CONNECT, TransportEventKind.CLOSE, TransportEventKind.OFFLINE],
            ConnectionState.OFFLINE,
        ),
        (
            [
                TransportEventKind.CONNECT,
                TransportEventKind.CLOSE,
                TransportEventKind.OFFLINE,
                TransportEventKind.RECONNECTING,
            ],
            ConnectionState.RECONNECTING,
        ),
        (
            [
                TransportEventKind.CONNECT,
                TransportEventKind.CLOSE,
                TransportEventKind.RECONNECTING,
                TransportEventKind.CONNECT,
            ],
            ConnectionState.CONNECTED,
        ),
        # close while still connecting leaves the state alone
        ([TransportEventKind.CLOSE], ConnectionState.CONNECTING),
        ([TransportEventKind.RECONNECTING, TransportEventKind.CLOSE], ConnectionState.RECONNECTING),
    ],
)
def test_event_sequences(events, expected):
    transport = FakeTransport()
    controller, *_ = make_controller(transport)
    controller.connect()
    for kind in events:
        transport.handle.emit(kind)
        # is_connected is true exactly in the connected state
        assert controller.is_connected == (controller.state is ConnectionState.CONNECTED)
    assert controller.state is expected


def test_error_event_is_logged(caplog):
    transport = FakeTransport()
    controller, *_ = make_controller(transport)
    controller.connect()
    transport.handle.emit(TransportEventKind.ERROR, error=TransportError('not authorized'))
    assert controller.state is ConnectionState.ERROR
    assert 'not authorized' in caplog.text


def test_open_failure_sets_error_state():
    transport = FakeTransport(fail_open=TransportError('unsupported scheme'))
    controller, *_ = make_controller(transport)
    controller.connect()
    assert controller.state is ConnectionState.ERROR
    assert controller.handle is None
    # and connect() may be retried
    transport.fail_open = None
    controller.connect()
    assert controller.state is ConnectionState.CONNECTING


def test_events_from_stale_handle_are_ignored():
    transport = FakeTransport()
    controller, _, dispatcher, _ = make_controller(transport)
    controller.connect()
    stale = transport.handle
    controller.disconnect()
    controller.connect()
    fresh = transport.handle
    assert stale is not fresh

    stale.emit(TransportEventKind.CONNECT)
    stale.deliver('t', b'late')
    assert controller.state is ConnectionState.CONNECTING
    assert dispatcher.messages() == []

    fresh.emit(TransportEventKind.CONNECT)
    stale.emit(TransportEventKind.CLOSE)
    assert controller.state is ConnectionState.CONNECTED


def test_messages_go_to_dispatcher():
    transport = FakeTransport()
    controller, _, dispatcher, _ = make_controller(transport)
    controller.connect()
    transport.handle.emit(TransportEventKind.CONNECT)
    transport.handle.deliver('sensors/1', b'21.5')
    assert [m.payload for m in dispatcher.messages('sensors/1')] == [b'21.5']


def test_disconnect_tears_everything_down():
    transport = FakeTransport()
    controller, _, dispatcher, operations = make_controller(transport)
    teardowns = []
    controller.add_teardown_listener(lambda: teardowns.append(controller.state))
    controller.connect()
    handle = transport.handle
    handle.emit(TransportEventKind.CONNECT)
    handle.deliver('t', b'x')
    operation = operations.track(OperationKind.PUBLISH, ['t'])

    controller.disconnect()

    assert controller.state is ConnectionState.DISCONNECTED
    assert controller.handle is None
    assert handle.closed is True
    assert handle.close_force is True
    assert dispatcher.messages() == []
    assert teardowns == [ConnectionState.DISCONNECTED]
    assert isinstance(operation.future.exception(timeout=0), DisconnectedError)
    assert len(operations) == 0


def test_disconnect_when_disconnected_is_noop():
    controller, guard, *_ = make_controller()
    changes = []
    guard.add_observer(changes.append)
    controller.disconnect()
    assert controller.state is ConnectionState.DISCONNECTED
    assert changes == []


def test_disconnect_after_open_failure_resets_state():
    transport = FakeTransport(fail_open=TransportError('boom'))
    controller, *_ = make_controller(transport)
    controller.connect()
    controller.disconnect()
    assert controller.state is ConnectionState.DISCONNECTED


def test_state_listener_sees_transitions():
    transport = FakeTransport()
    controller, *_ = make_controller(transport)
    transitions = []
    controller.add_state_listener(lambda prev, cur: transitions.append((prev, cur)))
    controller.connect()
    transport.handle.emit(TransportEventKind.CONNECT)
    transport.handle.emit(TransportEventKind.CONNECT)
    assert transitions == [
        (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
        (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
    ]
