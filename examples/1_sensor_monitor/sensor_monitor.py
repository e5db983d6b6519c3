from __future__ import annotations

import logging
import time

from pubsub_session import (
    ChangeKind,
    ConnectionConfig,
    InboundMessage,
    PubSubSession,
    default_session_lifecycle_loop,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SensorMonitor:
    """Rudimentary sensor monitor example.

    Listens to a couple of sensor topics, logs every reading, and publishes a summary
    every time the lifecycle loop wakes up.
    """

    def __init__(self, session: PubSubSession) -> None:
        self.session = session
        self.readings = 0

    def on_reading(self, message: InboundMessage) -> None:
        self.readings += 1
        logger.info('%s -> %s', message.topic, message.text)

    def on_change(self, kind: ChangeKind) -> None:
        if kind is ChangeKind.STATE:
            logger.info('connection is now %s', self.session.state.value)

    def report(self, session: PubSubSession) -> None:
        if not session.is_connected:
            logger.info('not connected, skipping report')
            return
        summary = {
            'readings': self.readings,
            'subscriptions': session.subscribed_topics,
            'at': time.time(),
        }
        session.publish('monitor/summary', summary, callback=self.on_published)

    @staticmethod
    def on_published(error: Exception | None) -> None:
        if error is not None:
            logger.warning('summary was not published: %s', error)


if __name__ == '__main__':
    """
    step one: create configuration class, which handles validation - see the ConnectionConfig class documentation for more info

    In most cases, everything under from_config_file should come from a configuration file, command line arguments, or environment variables.
    """
    from_config_file = {
        'url': 'mqtt://localhost:1883',
        'username': 'sensor_username',
        'password': 'sensor_password',
        'reconnect_period': 2000,
    }
    config = ConnectionConfig(**from_config_file)

    """
    step two - create the session. Declared topics are subscribed every time the connection is (re)established.
    """
    session = PubSubSession(config, topics=['sensors/1', 'sensors/2'])
    monitor = SensorMonitor(session)
    session.add_message_callback(monitor.on_reading)
    session.add_observer(monitor.on_change)

    """
    step three - start lifecycle loop. The session connects, and is disconnected again once you hit Ctrl+C.
    """
    logger.info('Starting sensor_monitor, use Ctrl+C to exit.')
    default_session_lifecycle_loop(
        session,
        delay=10.0,
        waiting_callback=monitor.report,
    )
