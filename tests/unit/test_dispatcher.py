from pubsub_session import HISTORY_CAPACITY, ChangeKind
from pubsub_session._internal.change_guard import ChangeGuard
from pubsub_session._internal.dispatcher import HistoryBuffer, MessageDispatcher

# HELPERS #####################


def make_dispatcher():
    guard = ChangeGuard()
    changes = []
    guard.add_observer(changes.append)
    return MessageDispatcher(guard), changes


# TESTS #####################


def test_history_keeps_last_hundred():
    dispatcher, _ = make_dispatcher()
    for i in range(105):
        dispatcher.dispatch('sensors/1', str(i).encode())
    messages = dispatcher.messages()
    assert len(messages) == HISTORY_CAPACITY == 100
    assert [m.payload for m in messages] == [str(i).encode() for i in range(5, 105)]


def test_history_filter_by_exact_topic():
    dispatcher, _ = make_dispatcher()
    dispatcher.dispatch('a', b'1')
    dispatcher.dispatch('a/b', b'2')
    dispatcher.dispatch('a', b'3')
    assert [m.payload for m in dispatcher.messages('a')] == [b'1', b'3']
    assert [m.topic for m in dispatcher.messages('a/#')] == []
    # snapshots are copies
    dispatcher.messages().clear()
    assert len(dispatcher.messages()) == 3


def test_history_records_even_without_listeners():
    dispatcher, changes = make_dispatcher()
    message = dispatcher.dispatch('nobody/listens', b'{"x": 1}')
    assert message.topic == 'nobody/listens'
    assert message.text == '{"x": 1}'
    assert message.received_at.tzinfo is not None
    assert dispatcher.messages() == [message]
    assert changes == [ChangeKind.HISTORY]


def test_listeners_called_in_registration_order():
    dispatcher, _ = make_dispatcher()
    calls = []
    dispatcher.add_listener('t', lambda m: calls.append(('first', m.payload)))
    dispatcher.add_listener('t', lambda m: calls.append(('second', m.payload)))
    dispatcher.add_listener('other', lambda m: calls.append(('other', m.payload)))
    dispatcher.dispatch('t', b'x')
    assert calls == [('first', b'x'), ('second', b'x')]
    assert dispatcher.listener_count('t') == 2


def test_failing_listener_does_not_block_others(caplog):
    dispatcher, _ = make_dispatcher()
    received = []

    def explode(_):
        msg = 'listener bug'
        raise RuntimeError(msg)

    dispatcher.add_listener('t', explode)
    dispatcher.add_listener('t', received.append)
    dispatcher.dispatch('t', b'x')
    assert [m.payload for m in received] == [b'x']
    assert len(dispatcher.messages()) == 1
    assert 'Message listener for topic t raised' in caplog.text


def test_remove_listeners():
    dispatcher, _ = make_dispatcher()
    received = []
    dispatcher.add_listener('t', received.append)
    dispatcher.remove_listeners('t')
    dispatcher.remove_listeners('never-added')
    dispatcher.dispatch('t', b'x')
    assert received == []
    assert dispatcher.listener_count('t') == 0


def test_clear_history_notifies_only_when_not_empty():
    dispatcher, changes = make_dispatcher()
    dispatcher.clear_history()
    assert changes == []
    dispatcher.dispatch('t', b'x')
    dispatcher.clear_history()
    assert dispatcher.messages() == []
    assert changes == [ChangeKind.HISTORY, ChangeKind.HISTORY]


def test_history_buffer_capacity():
    buffer = HistoryBuffer(capacity=2)
    assert buffer.capacity == 2
    assert len(buffer) == 0
    assert buffer.snapshot() == []
