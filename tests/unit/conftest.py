import pytest
from pubsub_session import ConnectionConfig, PubSubSession
from pubsub_session._internal.transport.transport import TransportEventKind

from tests.fixtures.fake_transport import FakeTransport


@pytest.fixture(name='transport')
def _fixture_transport():
    return FakeTransport()


@pytest.fixture(name='config')
def _fixture_config():
    return ConnectionConfig(url='broker://x')


@pytest.fixture(name='session')
def _fixture_session(config, transport):
    return PubSubSession(config, transport=transport)


@pytest.fixture(name='connected_session')
def _fixture_connected_session(session, transport):
    session.connect()
    transport.handle.emit(TransportEventKind.CONNECT)
    return session
