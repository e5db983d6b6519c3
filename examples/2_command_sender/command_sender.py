"""Publish a few commands and wait for each of them, without the lifecycle loop.

Shows how to follow the connection with an observer and how to use the futures returned by the session.
"""

import logging
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError

from pubsub_session import (
    ChangeKind,
    ConnectionConfig,
    PubSubSession,
    PublishOptions,
    PubSubSessionError,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


if __name__ == '__main__':
    config = ConnectionConfig(url='mqtt://localhost:1883', reconnect_period=0)
    session = PubSubSession(config)

    connected = threading.Event()
    session.add_observer(lambda kind: kind is ChangeKind.STATE and session.is_connected and connected.set())
    session.connect()
    if not connected.wait(timeout=5):
        logger.error('could not connect to %s (state: %s)', config.url, session.state.value)
        session.disconnect()
        raise SystemExit(1)

    try:
        for power in (True, False, True):
            future = session.publish('commands/1', {'power': power}, PublishOptions(qos=1))
            try:
                future.result(timeout=5)
            except PubSubSessionError as e:
                logger.warning('command failed: %s', e)
            except FutureTimeoutError:
                logger.warning('command was not acknowledged in time')
            else:
                logger.info('command power=%s delivered', power)
    finally:
        session.disconnect()
