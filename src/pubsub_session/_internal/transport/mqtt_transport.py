from __future__ import annotations

import threading
import time
import uuid
from typing import TYPE_CHECKING, Any, Sequence
from urllib.parse import urlsplit

import paho.mqtt.client as paho_client
from paho.mqtt.enums import CallbackAPIVersion

from ...exceptions import TransportError
from ..logger import logger
from .transport import TransportEvent, TransportEventKind

if TYPE_CHECKING:
    from paho.mqtt.client import ConnectFlags, DisconnectFlags
    from paho.mqtt.properties import Properties
    from paho.mqtt.reasoncodes import ReasonCode

    from ...config import ConnectionConfig
    from ...core_definitions import PublishOptions
    from .transport import Completion, TransportListener

_URL_SCHEMES = {
    # scheme: (paho transport, tls, default port)
    'mqtt': ('tcp', False, 1883),
    'tcp': ('tcp', False, 1883),
    'mqtts': ('tcp', True, 8883),
    'ssl': ('tcp', True, 8883),
    'ws': ('websockets', False, 80),
    'wss': ('websockets', True, 443),
}

_PROTOCOL_VERSIONS = {
    '3.1': paho_client.MQTTv31,
    '3.1.1': paho_client.MQTTv311,
    '5': paho_client.MQTTv5,
}

_DEFAULT_KEEPALIVE = 60

_EARLY_ACK_TTL = 5.0
"""Seconds an acknowledgement for an unknown message id is kept, waiting for its request to be registered."""


class MQTTHandle:
    """One paho client, connected in the background by paho's network thread.

    paho owns reconnection: with a non-zero reconnect period it retries forever, waiting that long between attempts.
    Acknowledgements for publish/subscribe/unsubscribe are correlated through paho message ids.

    Note that paho invokes every callback from its network thread, see https://github.com/eclipse/paho.mqtt.python/issues/358#issuecomment-1880819505

    Recognized `additional_options`:
      - protocol: '3.1', '3.1.1' (default) or '5'
      - keepalive: seconds between pings (default: 60)
      - tls: keyword arguments for paho's tls_set(), used with mqtts/ssl/wss urls
      - ws_headers: extra headers for the websocket handshake
    """

    def __init__(self, config: ConnectionConfig, listener: TransportListener) -> None:
        self._listener = listener
        self._closing = False
        self._connect_attempts = 0
        self._connect_timeout_s = config.connect_timeout / 1000

        # paho message id -> completion, guarded by _pending_lock
        self._pending: dict[int, Completion] = {}
        # acknowledgements which arrived before their request was registered: mid -> (error, monotonic time)
        self._early: dict[int, tuple[Exception | None, float]] = {}
        self._pending_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

        url = urlsplit(config.url)
        scheme = url.scheme.lower()
        if scheme not in _URL_SCHEMES:
            msg = f'unsupported broker url scheme {scheme!r}, expected one of {sorted(_URL_SCHEMES)}'
            raise TransportError(msg)
        transport, use_tls, default_port = _URL_SCHEMES[scheme]
        try:
            port = url.port or default_port
        except ValueError as e:
            msg = f'invalid port in broker url {config.url!r}'
            raise TransportError(msg) from e
        host = url.hostname or ''

        options = dict(config.additional_options)
        protocol = _PROTOCOL_VERSIONS.get(str(options.pop('protocol', '3.1.1')))
        if protocol is None:
            msg = f'unsupported MQTT protocol version, expected one of {sorted(_PROTOCOL_VERSIONS)}'
            raise TransportError(msg)
        keepalive = int(options.pop('keepalive', _DEFAULT_KEEPALIVE))
        tls_options: dict[str, Any] = options.pop('tls', None) or {}
        ws_headers = options.pop('ws_headers', None)
        for unknown in options:
            logger.warning('Ignoring unknown MQTT transport option %s', unknown)

        client_kwargs: dict[str, Any] = {
            'callback_api_version': CallbackAPIVersion.VERSION2,
            'client_id': config.client_id or f'pubsub-session-{uuid.uuid4()}',
            'protocol': protocol,
            'transport': transport,
            'reconnect_on_failure': config.reconnect_period > 0,
        }
        # MQTTv5 expresses the same thing through clean_start on connect
        if protocol != paho_client.MQTTv5:
            client_kwargs['clean_session'] = config.clean
        self._client = paho_client.Client(**client_kwargs)

        try:
            if config.username is not None:
                self._client.username_pw_set(username=config.username, password=config.password)
            if use_tls:
                self._client.tls_set(**tls_options)
            if transport == 'websockets':
                self._client.ws_set_options(path=url.path or '/mqtt', headers=ws_headers)
            self._client.connect_timeout = self._connect_timeout_s
            if config.reconnect_period > 0:
                period = config.reconnect_period / 1000
                self._client.reconnect_delay_set(min_delay=period, max_delay=period)

            self._client.on_pre_connect = self._on_pre_connect
            self._client.on_connect = self._on_connect
            self._client.on_connect_fail = self._on_connect_fail
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message
            self._client.on_publish = self._on_publish
            self._client.on_subscribe = self._on_subscribe
            self._client.on_unsubscribe = self._on_unsubscribe

            if protocol == paho_client.MQTTv5:
                self._client.connect_async(host, port, keepalive, clean_start=config.clean)
            else:
                self._client.connect_async(host, port, keepalive)
            self._client.loop_start()
        except (ValueError, OSError) as e:
            msg = f'unable to set up MQTT client for {config.url!r}: {e}'
            raise TransportError(msg) from e
        logger.debug('MQTT client %s connecting to %s:%s over %s', client_kwargs['client_id'], host, port, transport)

    # TransportHandle

    def close(self, force: bool) -> None:
        self._closing = True
        if not force:
            # give in-flight requests the chance to be acknowledged first
            self._idle.wait(self._connect_timeout_s)
        self._client.disconnect()
        self._client.loop_stop()
        self._fail_pending(TransportError('connection closed'))

    def publish(
        self, topic: str, payload: bytes, options: PublishOptions, completion: Completion
    ) -> None:
        try:
            info = self._client.publish(topic, payload, qos=options.qos, retain=options.retain)
        except ValueError as e:
            self._complete(completion, TransportError(f'publish to {topic!r} rejected: {e}'))
            return
        self._track(info.rc, info.mid, completion, 'publish')

    def subscribe(self, topics: Sequence[str], completion: Completion) -> None:
        try:
            rc, mid = self._client.subscribe([(topic, 0) for topic in topics])
        except ValueError as e:
            self._complete(completion, TransportError(f'subscribe rejected: {e}'))
            return
        self._track(rc, mid, completion, 'subscribe')

    def unsubscribe(self, topics: Sequence[str], completion: Completion) -> None:
        try:
            rc, mid = self._client.unsubscribe(list(topics))
        except ValueError as e:
            self._complete(completion, TransportError(f'unsubscribe rejected: {e}'))
            return
        self._track(rc, mid, completion, 'unsubscribe')

    # correlation

    def _track(self, rc: int, mid: int | None, completion: Completion, action: str) -> None:
        if rc != paho_client.MQTT_ERR_SUCCESS or mid is None:
            self._complete(
                completion, TransportError(f'{action} failed: {paho_client.error_string(rc)}', rc)
            )
            return
        with self._pending_lock:
            self._prune_early()
            if mid not in self._early:
                self._pending[mid] = completion
                self._idle.clear()
                return
            error, _ = self._early.pop(mid)
        self._complete(completion, error)

    def _resolve(self, mid: int, error: Exception | None) -> None:
        with self._pending_lock:
            completion = self._pending.pop(mid, None)
            if completion is None:
                # paho can acknowledge before publish()/subscribe() returned the message id
                self._prune_early()
                self._early[mid] = (error, time.monotonic())
                return
            if not self._pending:
                self._idle.set()
        self._complete(completion, error)

    def _prune_early(self) -> None:
        """Drop acknowledgements nobody claimed, so a reused message id cannot pick them up. Requires _pending_lock."""
        expired = time.monotonic() - _EARLY_ACK_TTL
        for mid in [mid for mid, (_, at) in self._early.items() if at < expired]:
            del self._early[mid]

    def _fail_pending(self, error: Exception) -> None:
        with self._pending_lock:
            completions = list(self._pending.values())
            self._pending.clear()
            self._early.clear()
            self._idle.set()
        for completion in completions:
            self._complete(completion, error)

    @staticmethod
    def _complete(completion: Completion, error: Exception | None) -> None:
        try:
            completion(error)
        except Exception:  # noqa: BLE001
            logger.exception('MQTT completion callback raised')

    def _emit(self, event: TransportEvent) -> None:
        # an exception escaping here would stop paho's network thread
        try:
            self._listener(self, event)
        except Exception:  # noqa: BLE001
            logger.exception('Transport listener raised on %s event', event.kind.value)

    # paho callbacks

    def _on_pre_connect(self, client: paho_client.Client, userdata: Any) -> None:  # noqa: ARG002
        self._connect_attempts += 1
        if self._connect_attempts > 1:
            self._emit(TransportEvent(TransportEventKind.RECONNECTING))

    def _on_connect(
        self,
        client: paho_client.Client,  # noqa: ARG002
        userdata: Any,  # noqa: ARG002
        flags: ConnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None,  # noqa: ARG002
    ) -> None:
        if reason_code.is_failure:
            logger.error('MQTT broker refused the connection (reason: %s)', reason_code)
            self._emit(
                TransportEvent(
                    TransportEventKind.ERROR,
                    error=TransportError(f'connection refused: {reason_code}', reason_code),
                )
            )
            return
        logger.debug('MQTT connected - reason-code=%s flags=%s', reason_code, flags)
        with self._pending_lock:
            # acknowledgements from the previous connection belong to requests which were already failed
            self._early.clear()
        self._emit(TransportEvent(TransportEventKind.CONNECT))

    def _on_connect_fail(self, client: paho_client.Client, userdata: Any) -> None:  # noqa: ARG002
        self._emit(
            TransportEvent(TransportEventKind.ERROR, error=TransportError('unable to reach broker'))
        )

    def _on_disconnect(
        self,
        client: paho_client.Client,  # noqa: ARG002
        userdata: Any,  # noqa: ARG002
        flags: DisconnectFlags,  # noqa: ARG002
        reason_code: ReasonCode,
        properties: Properties | None,  # noqa: ARG002
    ) -> None:
        logger.debug('MQTT disconnected - reason-code=%s closing=%s', reason_code, self._closing)
        self._fail_pending(TransportError(f'connection lost: {reason_code}', reason_code))
        self._emit(TransportEvent(TransportEventKind.CLOSE))
        if not self._closing:
            self._emit(TransportEvent(TransportEventKind.OFFLINE))

    def _on_message(
        self,
        client: paho_client.Client,  # noqa: ARG002
        userdata: Any,  # noqa: ARG002
        message: paho_client.MQTTMessage,
    ) -> None:
        self._emit(
            TransportEvent(
                TransportEventKind.MESSAGE, topic=message.topic, payload=bytes(message.payload)
            )
        )

    def _on_publish(
        self,
        client: paho_client.Client,  # noqa: ARG002
        userdata: Any,  # noqa: ARG002
        mid: int,
        reason_code: ReasonCode,
        properties: Properties | None,  # noqa: ARG002
    ) -> None:
        error = None
        if reason_code.is_failure:
            error = TransportError(f'publish rejected: {reason_code}', reason_code)
        self._resolve(mid, error)

    def _on_subscribe(
        self,
        client: paho_client.Client,  # noqa: ARG002
        userdata: Any,  # noqa: ARG002
        mid: int,
        reason_code_list: list[ReasonCode],
        properties: Properties | None,  # noqa: ARG002
    ) -> None:
        self._resolve(mid, _failure_from_codes('subscribe', reason_code_list))

    def _on_unsubscribe(
        self,
        client: paho_client.Client,  # noqa: ARG002
        userdata: Any,  # noqa: ARG002
        mid: int,
        reason_code_list: list[ReasonCode],
        properties: Properties | None,  # noqa: ARG002
    ) -> None:
        self._resolve(mid, _failure_from_codes('unsubscribe', reason_code_list))


def _failure_from_codes(action: str, reason_codes: Sequence[ReasonCode]) -> TransportError | None:
    failures = [code for code in reason_codes if code.is_failure]
    if not failures:
        return None
    return TransportError(f'{action} rejected by broker: {", ".join(str(c) for c in failures)}', failures[0])


class MQTTTransport:
    """Default transport, backed by paho-mqtt."""

    def open(self, config: ConnectionConfig, listener: TransportListener) -> MQTTHandle:
        return MQTTHandle(config, listener)
