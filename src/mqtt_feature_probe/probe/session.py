"""
Ephemeral MQTT Probe Sessions.

This module is responsible for:
- Building a configured paho-mqtt client (host, port, credentials, TLS, client id).
- Turning paho's callback API into blocking connect/subscribe/publish calls
  that wait for the broker's acknowledgement with a bound.
- Telling negative acknowledgements (CONNACK, SUBACK, PUBACK reason codes)
  apart from client-side failures.
- Routing delivered messages to per-subscription callbacks on paho's network thread.
- Tearing the connection down idempotently.
"""
import logging
import ssl
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt

from mqtt_feature_probe.probe.identifiers import generate_client_id, strip_share_group
from mqtt_feature_probe.probe.models import ConnectAck, ConnectionConfig, ReceivedMessage

logger = logging.getLogger(__name__)

MessageCallback = Callable[[ReceivedMessage], None]

# --- Errors ---

class SessionError(Exception):
    """A session operation failed on the client side (not connected, no acknowledgement, ...)."""

class AckTimeoutError(SessionError):
    """The broker did not acknowledge a packet within the timeout."""

class AcknowledgementError(SessionError):
    """The broker answered with a negative acknowledgement."""
    def __init__(self, packet: str, reason_code: str, value: int):
        super().__init__(f"{packet} rejected by broker: {reason_code} ({value:#04x})")
        self.packet = packet
        self.reason_code = reason_code
        self.value = value

class ConnAckError(AcknowledgementError):
    def __init__(self, ack: ConnectAck):
        super().__init__("CONNECT", ack.reason_code, ack.value)
        self.ack = ack

class SubAckError(AcknowledgementError):
    def __init__(self, topic_filter: str, reason_code: str, value: int):
        super().__init__("SUBSCRIBE", reason_code, value)
        self.topic_filter = topic_filter

class PubAckError(AcknowledgementError):
    def __init__(self, topic: str, reason_code: str, value: int):
        super().__init__("PUBLISH", reason_code, value)
        self.topic = topic


class _AckTracker:
    """Collects acknowledgements by packet id; the probing thread waits for its own id."""
    def __init__(self, kind: str):
        self._kind = kind
        self._acks: Dict[int, Any] = {}
        self._cond = threading.Condition()

    def record(self, mid: int, ack: Any):
        with self._cond:
            self._acks[mid] = ack
            self._cond.notify_all()

    def wait_for(self, mid: int, timeout: float) -> Any:
        with self._cond:
            if not self._cond.wait_for(lambda: mid in self._acks, timeout=timeout):
                raise AckTimeoutError(f"No {self._kind} for packet {mid} within {timeout}s")
            return self._acks.pop(mid)


class ProbeSession:
    config: ConnectionConfig
    client_id: str
    _client: mqtt.Client
    _connack: Optional[ConnectAck]
    _connack_received: threading.Event
    _disconnected: threading.Event
    _handlers: List[Tuple[str, MessageCallback]]
    _loop_started: bool

    """
    One short-lived MQTT v5 connection, owned by exactly one probe step.

    Use it as a context manager (or call `close()`) so the connection is torn
    down on every exit path.
    """
    def __init__(self, config: ConnectionConfig, client_id: Optional[str] = None):
        self.config = config
        self.client_id = client_id if client_id is not None else generate_client_id(config.client_id)

        self._connack = None
        self._connack_received = threading.Event()
        self._disconnected = threading.Event()
        self._handlers = []
        self._loop_started = False
        self._subacks = _AckTracker("SUBACK")
        self._pubacks = _AckTracker("PUBACK")

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=mqtt.MQTTv5,
            reconnect_on_failure=False,
        )
        self._client.connect_timeout = config.timeout

        # Identity & Auth
        if config.username is not None or config.password is not None:
            self._client.username_pw_set(config.username, config.password)
        if config.tls is not None:
            tls = config.tls
            self._client.tls_set(
                ca_certs=tls.ca_certs,
                certfile=tls.certfile,
                keyfile=tls.keyfile,
                cert_reqs=ssl.CERT_NONE if tls.insecure else ssl.CERT_REQUIRED,
            )
            if tls.insecure:
                self._client.tls_insecure_set(True)

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_subscribe = self._on_subscribe
        self._client.on_publish = self._on_publish
        self._client.on_message = self._on_message

    def __enter__(self) -> "ProbeSession":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # --- Blocking operations (probing thread) ---

    def connect(self) -> ConnectAck:
        """
        Connects and waits for the CONNACK.
        Raises `ConnAckError` if the broker refused the connection.
        """
        host, port = self.config.host, self.config.port
        logger.debug(f"Connecting {self.client_id!r} to {host}:{port}...")
        self._connack_received.clear()
        self._disconnected.clear()
        self._client.connect(host, port, keepalive=self.config.keepalive, clean_start=True)
        self._client.loop_start()
        self._loop_started = True

        if not self._connack_received.wait(self.config.timeout):
            raise AckTimeoutError(f"No CONNACK from {host}:{port} within {self.config.timeout}s")
        ack = self._connack
        if ack.is_failure:
            raise ConnAckError(ack)
        return ack

    def is_connected(self) -> bool:
        return self._client.is_connected()

    def disconnect(self):
        self._client.disconnect()
        if not self._disconnected.wait(self.config.timeout):
            logger.warning(f"Session {self.client_id!r} did not confirm its disconnect in time.")

    def close(self):
        """Disconnects if connected and stops the network loop. Safe to call repeatedly."""
        if self.is_connected():
            self.disconnect()
        if self._loop_started:
            self._client.loop_stop()
            self._loop_started = False

    def subscribe(self, topic_filter: str, qos: int, on_message: MessageCallback) -> List[str]:
        """
        Subscribes and waits for the SUBACK.

        `on_message` is registered before the SUBSCRIBE goes out, so retained
        messages sent right after the SUBACK are not missed. Raises
        `SubAckError` if the broker refused the subscription.
        """
        handler = (topic_filter, on_message)
        self._handlers = self._handlers + [handler]

        result, mid = self._client.subscribe(topic_filter, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._remove_handler(handler)
            raise SessionError(f"Could not send SUBSCRIBE for '{topic_filter}': {mqtt.error_string(result)}")

        reason_codes = self._subacks.wait_for(mid, self.config.timeout)
        for reason_code in reason_codes:
            if reason_code.is_failure:
                self._remove_handler(handler)
                raise SubAckError(topic_filter, str(reason_code), reason_code.value)
        return [str(reason_code) for reason_code in reason_codes]

    def publish(self, topic: str, payload: bytes, qos: int = 1, retain: bool = False) -> str:
        """
        Publishes and waits until paho reports the message as sent (QoS 0)
        or acknowledged (QoS 1 and 2). Raises `PubAckError` on a negative
        acknowledgement.
        """
        info = self.publish_async(topic, payload, qos=qos, retain=retain)
        reason_code = self._pubacks.wait_for(info.mid, self.config.timeout)
        if reason_code is not None and reason_code.is_failure:
            raise PubAckError(topic, str(reason_code), reason_code.value)
        return str(reason_code)

    def publish_async(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> mqtt.MQTTMessageInfo:
        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise SessionError(f"Could not send PUBLISH to '{topic}': {mqtt.error_string(info.rc)}")
        return info

    def _remove_handler(self, handler: Tuple[str, MessageCallback]):
        self._handlers = [h for h in self._handlers if h is not handler]

    # --- paho callbacks (network thread) ---

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        self._connack = ConnectAck(
            reason_code=str(reason_code),
            value=reason_code.value,
            session_present=bool(getattr(flags, "session_present", False)),
            properties=properties.json() if properties is not None else {},
        )
        logger.debug(f"CONNACK for {self.client_id!r}: {reason_code}")
        self._connack_received.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        logger.debug(f"Session {self.client_id!r} disconnected: {reason_code}")
        self._disconnected.set()

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        self._subacks.record(mid, list(reason_code_list))

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        self._pubacks.record(mid, reason_code)

    def _on_message(self, client, userdata, message):
        received = ReceivedMessage(
            topic=message.topic,
            payload=bytes(message.payload),
            qos=message.qos,
            retain=bool(message.retain),
        )
        for topic_filter, callback in self._handlers:
            if mqtt.topic_matches_sub(strip_share_group(topic_filter), received.topic):
                callback(received)
