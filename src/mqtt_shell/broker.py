"""Broker contract and the paho-mqtt backed implementation."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt
from loguru import logger

from mqtt_shell.config import Settings
from mqtt_shell.errors import BrokerError

if TYPE_CHECKING:
    from mqtt_shell.core.writers import TextOutput

MessageHandler = Callable[[str, bytes], None]

DEFAULT_TIMEOUT_SECONDS = 10.0
TLS_SCHEMES = frozenset({"ssl", "tls", "mqtts", "wss"})
WEBSOCKET_SCHEMES = frozenset({"ws", "wss"})
DEFAULT_PORTS = {"tcp": 1883, "mqtt": 1883, "ssl": 8883, "tls": 8883, "mqtts": 8883, "ws": 80, "wss": 443}
KEEPALIVE_SECONDS = 60


class BrokerProtocol(Protocol):
    """Minimal contract the shell needs from a broker client."""

    def publish(self, topic: str, qos: int, retained: bool, payload: str | bytes) -> None: ...

    def subscribe(self, topic: str, qos: int, handler: MessageHandler) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...


@dataclass(frozen=True)
class BrokerAddress:
    scheme: str
    host: str
    port: int
    path: str = "/"

    @property
    def tls(self) -> bool:
        return self.scheme in TLS_SCHEMES

    @property
    def transport(self) -> str:
        return "websockets" if self.scheme in WEBSOCKET_SCHEMES else "tcp"


def parse_broker_uri(uri: str) -> BrokerAddress:
    """Parse ``tcp://host:port`` style broker URIs."""

    parts = urlsplit(uri if "://" in uri else f"tcp://{uri}")
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise BrokerError(f"unsupported broker scheme: {parts.scheme}")
    if not parts.hostname:
        raise BrokerError(f"invalid broker uri: {uri}")
    return BrokerAddress(
        scheme=scheme,
        host=parts.hostname,
        port=parts.port or DEFAULT_PORTS[scheme],
        path=parts.path or "/",
    )


@dataclass
class _Ack:
    done: threading.Event = field(default_factory=threading.Event)
    error: str | None = None


class _Delivery:
    """Delivers the messages of one subscription sequentially on its own thread."""

    _STOP = object()

    def __init__(self, topic: str, handler: MessageHandler) -> None:
        self.topic = topic
        self.handler = handler
        self._queue: queue.Queue[Any] = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=f"delivery:{topic}", daemon=True)
        self._thread.start()

    def put(self, topic: str, payload: bytes) -> None:
        self._queue.put((topic, payload))

    def stop(self) -> None:
        self._queue.put(self._STOP)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is self._STOP:
                return
            topic, payload = item
            try:
                self.handler(topic, payload)
            except Exception:
                logger.exception("message handler failed for topic {}", topic)


class MqttBroker:
    """paho-mqtt client with blocking publish/subscribe/unsubscribe acknowledgements."""

    def __init__(self, settings: Settings, out: TextOutput, *, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        if not settings.broker:
            raise BrokerError("Broker is missing!")
        self.address = parse_broker_uri(settings.broker)
        self.out = out
        self.timeout_seconds = timeout_seconds
        self.on_reconnect: Callable[[], None] | None = None

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            clean_session=settings.clean_session,
            transport=self.address.transport,
        )
        if self.address.transport == "websockets":
            self._client.ws_set_options(path=self.address.path)
        if settings.username:
            self._client.username_pw_set(settings.username, settings.password)
        if self.address.tls or settings.ca:
            self._client.tls_set(ca_certs=str(settings.ca) if settings.ca else None)

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_subscribe = self._on_subscribe
        self._client.on_unsubscribe = self._on_unsubscribe

        self._connected = threading.Event()
        self._first_connect = True
        self._closing = False
        self._ack_lock = threading.Lock()
        self._pending: dict[int, _Ack] = {}
        self._deliveries: dict[str, _Delivery] = {}

    def connect(self) -> None:
        try:
            self._client.connect(self.address.host, self.address.port, keepalive=KEEPALIVE_SECONDS)
        except OSError as exc:
            raise BrokerError(f"unable to connect to {self.address.host}:{self.address.port}: {exc}") from exc
        self._client.loop_start()
        if not self._connected.wait(self.timeout_seconds):
            self._client.loop_stop()
            raise BrokerError("timeout while connecting to broker")

    def close(self) -> None:
        self._closing = True
        for delivery in self._deliveries.values():
            delivery.stop()
        self._deliveries.clear()
        self._client.disconnect()
        self._client.loop_stop()

    def publish(self, topic: str, qos: int, retained: bool, payload: str | bytes) -> None:
        info = self._client.publish(topic, payload, qos=qos, retain=retained)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerError(mqtt.error_string(info.rc))
        try:
            info.wait_for_publish(self.timeout_seconds)
        except (RuntimeError, ValueError) as exc:
            raise BrokerError(str(exc)) from exc
        if not info.is_published():
            raise BrokerError("timeout while publishing")

    def subscribe(self, topic: str, qos: int, handler: MessageHandler) -> None:
        delivery = self._deliveries.get(topic)
        created = delivery is None
        if delivery is None:
            delivery = _Delivery(topic, handler)
            self._deliveries[topic] = delivery
        previous, delivery.handler = delivery.handler, handler
        self._client.message_callback_add(topic, self._dispatcher(delivery))

        try:
            with self._ack_lock:
                result, mid = self._client.subscribe(topic, qos=qos)
                ack = self._register(result, mid)
            self._await(ack, "subscribe")
        except BrokerError:
            if created:
                self._drop_delivery(topic)
            else:
                delivery.handler = previous
            raise
        logger.debug("subscribed to {} with qos {}", topic, qos)

    def unsubscribe(self, topic: str) -> None:
        with self._ack_lock:
            result, mid = self._client.unsubscribe(topic)
            ack = self._register(result, mid)
        self._await(ack, "unsubscribe")
        self._drop_delivery(topic)
        logger.debug("unsubscribed from {}", topic)

    def _dispatcher(self, delivery: _Delivery) -> Callable[[mqtt.Client, Any, mqtt.MQTTMessage], None]:
        def dispatch(_client: mqtt.Client, _userdata: Any, message: mqtt.MQTTMessage) -> None:
            delivery.put(message.topic, message.payload)

        return dispatch

    def _drop_delivery(self, topic: str) -> None:
        self._client.message_callback_remove(topic)
        delivery = self._deliveries.pop(topic, None)
        if delivery is not None:
            delivery.stop()

    def _register(self, result: int, mid: int | None) -> _Ack:
        if result != mqtt.MQTT_ERR_SUCCESS or mid is None:
            raise BrokerError(mqtt.error_string(result))
        ack = _Ack()
        self._pending[mid] = ack
        return ack

    def _await(self, ack: _Ack, action: str) -> None:
        if not ack.done.wait(self.timeout_seconds):
            raise BrokerError(f"timeout while waiting for {action} acknowledgement")
        if ack.error:
            raise BrokerError(ack.error)

    def _resolve(self, mid: int, reason_codes: list[Any]) -> None:
        with self._ack_lock:
            ack = self._pending.pop(mid, None)
        if ack is None:
            return
        failures = [str(code) for code in reason_codes if getattr(code, "is_failure", False)]
        if failures:
            ack.error = ", ".join(failures)
        ack.done.set()

    def _on_subscribe(self, _client: mqtt.Client, _userdata: Any, mid: int, reason_codes: list[Any], _properties: Any) -> None:
        self._resolve(mid, reason_codes)

    def _on_unsubscribe(self, _client: mqtt.Client, _userdata: Any, mid: int, reason_codes: list[Any], _properties: Any) -> None:
        self._resolve(mid, reason_codes)

    def _on_connect(self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
        if getattr(reason_code, "is_failure", False):
            self.out.write(f"Connection to broker refused: {reason_code}\n")
            return
        if self._first_connect:
            self.out.write("Successfully connected to mqtt broker.\n")
            self._first_connect = False
            self._connected.set()
            return
        self.out.write("Successfully re-connected to mqtt broker.\n")
        listener = self.on_reconnect
        if listener is not None:
            # re-subscribing waits for acknowledgements the network thread has to process
            threading.Thread(target=listener, name="reconnect", daemon=True).start()

    def _on_disconnect(self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
        if self._closing:
            return
        logger.warning("connection lost: {}", reason_code)
        self.out.write("Connection to broker lost. Reconnecting...\n")
