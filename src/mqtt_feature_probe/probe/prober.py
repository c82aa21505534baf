"""
Feature Probes and the Capability Prober.

This module contains the `FeatureProber`, the public entry point of the
probing engine. It is responsible for:
- Holding the connection configuration and the one piece of state that
  outlives a probe (the discovered maximum topic length).
- Running each feature probe on fresh ephemeral sessions and closing them
  on every exit path.
- Arming a `SignalLatch` before each triggering publish and waiting on it
  with the configured timeout.
- Classifying every attempt into a `ProbeOutcome` instead of raising.
- Wiring the payload, topic and client id trials into the boundary search.
"""
import contextlib
import logging
import threading
import time
from typing import Callable, Iterator, List, Optional, Set

from mqtt_feature_probe.probe.boundary import discover_boundary
from mqtt_feature_probe.probe.identifiers import (
    CLIENT_ID_CHARACTERS,
    filler,
    generate_topic,
    shared_filter,
)
from mqtt_feature_probe.probe.latch import SignalLatch, WaitInterrupted
from mqtt_feature_probe.probe.models import (
    CharacterResult,
    ClientIdCharactersResult,
    ConnectionConfig,
    ConnectResult,
    DiscoveryResult,
    OutcomeKind,
    ProbeOutcome,
    QosResult,
    ReceivedMessage,
    WildcardResult,
)
from mqtt_feature_probe.probe.session import AcknowledgementError, ConnAckError, ProbeSession, SessionError

logger = logging.getLogger(__name__)

MAX_TOPIC_LENGTH = 65535
MAX_CLIENT_ID_LENGTH = 65535

# Extra wait after the first shared delivery, on top of the time it took to
# arrive, before a second delivery counts as absent.
SHARED_GRACE_PERIOD = 0.1

SessionFactory = Callable[..., ProbeSession]


class FeatureProber:
    config: ConnectionConfig
    _session_factory: SessionFactory
    _max_topic_length: int
    _armed: Set[SignalLatch]
    _armed_lock: threading.RLock
    _interrupted: threading.Event

    """
    Probes one broker for optional features and limits.

    Probes run one after the other from the calling thread. None of the
    public methods raises for a failed probe; failures come back as
    `ProbeOutcome` values.
    """
    def __init__(self, config: ConnectionConfig, session_factory: SessionFactory = ProbeSession):
        self.config = config
        self._session_factory = session_factory
        self._max_topic_length = -1
        self._armed = set()
        # Reentrant: interrupt() runs from a SIGINT handler on the probing thread
        self._armed_lock = threading.RLock()
        self._interrupted = threading.Event()

    # --- Shared state ---

    @property
    def max_topic_length(self) -> int:
        """The largest topic length known to be safe, or -1 if unknown."""
        return self._max_topic_length

    @max_topic_length.setter
    def max_topic_length(self, value: int):
        self.set_max_topic_length(value)

    def set_max_topic_length(self, max_topic_length: int):
        logger.info(f"Using a maximum topic length of {max_topic_length}")
        self._max_topic_length = max_topic_length

    @property
    def interrupted(self) -> bool:
        return self._interrupted.is_set()

    def interrupt(self):
        """
        Interrupts the probe currently waiting (callable from another thread
        or a signal handler). Every later wait of this prober is interrupted too.
        """
        self._interrupted.set()
        with self._armed_lock:
            latches = list(self._armed)
        for latch in latches:
            latch.interrupt()
        logger.info("Probing interrupted.")

    # --- Probes ---

    def check_connect(self) -> ConnectResult:
        """Connects once and returns the broker's CONNACK as it was sent."""
        if self.interrupted:
            return ConnectResult(outcome=ProbeOutcome(OutcomeKind.INTERRUPTED))
        try:
            with self._session() as session:
                ack = session.connect()
                connected = session.is_connected()
        except ConnAckError as e:
            logger.info(f"Broker refused the connection: {e.reason_code}")
            return ConnectResult(outcome=ProbeOutcome(OutcomeKind.CONNECT_FAILED, e.reason_code), ack=e.ack)
        except Exception as e:
            self._log_failure(e, f"Could not connect to {self.config.host}:{self.config.port}")
            return ConnectResult(outcome=ProbeOutcome.undefined(_reason(e)))
        return ConnectResult(outcome=ProbeOutcome(OutcomeKind.OK, ack.reason_code), ack=ack, connected=connected)

    def check_shared_subscription(self) -> ProbeOutcome:
        """
        Two sessions subscribe to the same shared filter and one message is
        published. If both receive it, subscriptions are not shared.
        """
        return self._guarded("shared subscription", self._shared_subscription)

    def check_qos(self, qos: int, tries: int) -> QosResult:
        """
        Publishes `tries` messages at `qos` and counts how many arrive at the
        requested level with the expected payload. Partial delivery is a
        result, not an error.
        """
        if qos not in (0, 1, 2):
            raise ValueError(f"QoS must be 0, 1 or 2, got {qos}")
        if tries < 0:
            raise ValueError(f"tries must not be negative, got {tries}")
        try:
            return self._qos(qos, tries)
        except Exception as e:
            outcome = self._classify_failure(e, f"QoS {qos} probe failed")
            return QosResult(qos=qos, tries=tries, received=0, elapsed=0.0, outcome=outcome)

    def check_retain(self) -> ProbeOutcome:
        """Publishes a retained message and expects a later subscriber to get it flagged retained."""
        return self._guarded("retain", self._retain)

    def check_wildcards(self) -> WildcardResult:
        return WildcardResult(
            single_level=self.check_wildcard("+", "test"),
            multi_level=self.check_wildcard("#", "test/subtopic"),
        )

    def check_wildcard(self, wildcard: str, publish_suffix: str) -> ProbeOutcome:
        """Subscribes to `<topic>/<wildcard>` and publishes to `<topic>/<publish_suffix>`."""
        return self._guarded(f"wildcard '{wildcard}'", lambda: self._wildcard(wildcard, publish_suffix))

    def discover_payload_size(self, max_size: int) -> DiscoveryResult:
        topic = self._topic()
        logger.info(f"Searching the maximum payload size up to {max_size} bytes on '{topic}'")
        return discover_boundary(max_size, lambda size: self._payload_trial(topic, size))

    def discover_topic_length(self, max_length: int = MAX_TOPIC_LENGTH) -> DiscoveryResult:
        """Searches the maximum topic length and remembers it for later probes."""
        logger.info(f"Searching the maximum topic length up to {max_length} bytes")
        return discover_boundary(max_length, self._topic_trial, on_boundary_found=self.set_max_topic_length)

    def discover_client_id_length(self, max_length: int = MAX_CLIENT_ID_LENGTH) -> DiscoveryResult:
        logger.info(f"Searching the maximum client id length up to {max_length} bytes")
        return discover_boundary(max_length, self._client_id_trial)

    def scan_client_id_characters(self, characters: str = CLIENT_ID_CHARACTERS) -> ClientIdCharactersResult:
        """
        Tries the whole character set as one client id. If the broker refuses
        it, every character is tried on its own and its CONNACK recorded.
        """
        characters = "".join(dict.fromkeys(characters))
        whole_set = self._connect_with_id(characters)
        if whole_set.ok:
            return ClientIdCharactersResult(all_accepted=True)
        if whole_set.kind is OutcomeKind.INTERRUPTED:
            return ClientIdCharactersResult(all_accepted=False)
        logger.info(f"Client id '{characters}' refused, trying each character on its own")
        return ClientIdCharactersResult(
            all_accepted=False,
            characters=tuple(CharacterResult(c, self._connect_with_id(c)) for c in characters),
        )

    # --- Probe bodies ---

    def _shared_subscription(self) -> ProbeOutcome:
        topic = self._topic()
        topic_filter = shared_filter(topic)
        duplicate = threading.Event()

        with contextlib.ExitStack() as stack, self._arm(1) as latch:
            def on_message(message: ReceivedMessage):
                # Anything after the first delivery means the group did not share.
                if not latch.signal():
                    duplicate.set()

            publisher = self._connected(stack)
            for _ in range(2):
                subscriber = self._connected(stack)
                try:
                    subscriber.subscribe(topic_filter, 1, on_message)
                except Exception as e:
                    self._log_failure(e, f"Could not subscribe to '{topic_filter}'")
                    return ProbeOutcome(OutcomeKind.SUBSCRIBE_FAILED, _reason(e))

            try:
                publisher.publish(topic, b"test", qos=1)
            except Exception as e:
                self._log_failure(e, f"Could not publish to topic '{topic}'")
                return ProbeOutcome(OutcomeKind.PUBLISH_FAILED, _reason(e))
            started = time.monotonic()

            try:
                if not latch.wait(self.config.timeout):
                    return ProbeOutcome(OutcomeKind.TIMEOUT)
                time_to_receive = time.monotonic() - started
                latch.pause(SHARED_GRACE_PERIOD + time_to_receive)
            except WaitInterrupted:
                logger.warning("Waiting for shared subscription deliveries was interrupted")
                return ProbeOutcome(OutcomeKind.INTERRUPTED)

        if duplicate.is_set():
            return ProbeOutcome(OutcomeKind.NOT_SHARED)
        return ProbeOutcome(OutcomeKind.OK)

    def _qos(self, qos: int, tries: int) -> QosResult:
        topic = self._topic()
        payload = f"QoS {qos}".encode()

        with contextlib.ExitStack() as stack, self._arm(tries) as latch:
            def on_message(message: ReceivedMessage):
                if message.qos == qos and message.payload == payload:
                    latch.signal()

            subscriber = self._connected(stack)
            publisher = self._connected(stack)
            try:
                subscriber.subscribe(topic, qos, on_message)
            except Exception as e:
                self._log_failure(e, f"Could not subscribe with QoS {qos}")
                return QosResult(qos=qos, tries=tries, received=0, elapsed=0.0,
                                 outcome=ProbeOutcome(OutcomeKind.SUBSCRIBE_FAILED, _reason(e)))

            before = time.monotonic()
            for _ in range(tries):
                try:
                    publisher.publish_async(topic, payload, qos=qos)
                except Exception as e:
                    self._log_failure(e, f"Could not publish with QoS {qos}")

            interrupted = False
            try:
                latch.wait(self.config.timeout)
            except WaitInterrupted:
                logger.warning(f"Interrupted while waiting for QoS {qos} publishes to arrive")
                interrupted = True
            elapsed = time.monotonic() - before

        received = tries - latch.count
        if interrupted:
            outcome = ProbeOutcome(OutcomeKind.INTERRUPTED)
        elif received == tries:
            outcome = ProbeOutcome(OutcomeKind.OK)
        else:
            outcome = ProbeOutcome(OutcomeKind.TIMEOUT)
        logger.info(f"QoS {qos}: received {received}/{tries} in {elapsed:.3f}s")
        return QosResult(qos=qos, tries=tries, received=received, elapsed=elapsed, outcome=outcome)

    def _retain(self) -> ProbeOutcome:
        topic = self._topic()

        with contextlib.ExitStack() as stack, self._arm(1) as latch:
            def on_message(message: ReceivedMessage):
                if message.retain:
                    latch.signal()

            publisher = self._connected(stack)
            try:
                publisher.publish(topic, b"RETAIN", qos=1, retain=True)
            except Exception as e:
                self._log_failure(e, "Retained publish failed")
                return ProbeOutcome(OutcomeKind.PUBLISH_FAILED, _reason(e))

            try:
                subscriber = self._connected(stack)
                try:
                    subscriber.subscribe(topic, 1, on_message)
                except Exception as e:
                    self._log_failure(e, "Retained subscribe failed")
                    return ProbeOutcome(OutcomeKind.SUBSCRIBE_FAILED, _reason(e))

                try:
                    fired = latch.wait(self.config.timeout)
                except WaitInterrupted:
                    logger.warning("Interrupted while waiting for the retained publish to arrive")
                    return ProbeOutcome(OutcomeKind.INTERRUPTED)
            finally:
                self._clear_retained(publisher, topic)

        return ProbeOutcome(OutcomeKind.OK) if fired else ProbeOutcome(OutcomeKind.TIMEOUT)

    def _clear_retained(self, publisher: ProbeSession, topic: str):
        try:
            publisher.publish(topic, b"", qos=1, retain=True)
        except Exception as e:
            logger.warning(f"Could not clear the retained message on '{topic}': {e}")

    def _wildcard(self, wildcard: str, publish_suffix: str) -> ProbeOutcome:
        topic = self._topic()
        subscribe_to = f"{topic}/{wildcard}"
        publish_to = f"{topic}/{publish_suffix}"
        payload = b"WILDCARD_TEST"

        with contextlib.ExitStack() as stack, self._arm(1) as latch:
            def on_message(message: ReceivedMessage):
                if message.payload == payload:
                    latch.signal()

            subscriber = self._connected(stack)
            publisher = self._connected(stack)
            try:
                subscriber.subscribe(subscribe_to, 1, on_message)
            except Exception as e:
                self._log_failure(e, f"Subscribe to wildcard topic '{subscribe_to}' failed")
                return ProbeOutcome(OutcomeKind.SUBSCRIBE_FAILED, _reason(e))

            try:
                publisher.publish(publish_to, payload, qos=1)
            except Exception as e:
                self._log_failure(e, f"Publish to topic '{publish_to}' failed")
                return ProbeOutcome(OutcomeKind.PUBLISH_FAILED, _reason(e))

            try:
                fired = latch.wait(self.config.timeout)
            except WaitInterrupted:
                logger.warning(f"Interrupted while '{subscribe_to}' waited for a publish to '{publish_to}'")
                return ProbeOutcome(OutcomeKind.INTERRUPTED)

        return ProbeOutcome(OutcomeKind.OK) if fired else ProbeOutcome(OutcomeKind.TIMEOUT)

    # --- Boundary trials ---

    def _payload_trial(self, topic: str, size: int) -> ProbeOutcome:
        return self._guarded(f"payload of {size} bytes", lambda: self._round_trip(topic, filler(size).encode()))

    def _topic_trial(self, length: int) -> ProbeOutcome:
        topic = filler(length)
        return self._guarded(f"topic of {length} bytes", lambda: self._round_trip(topic, topic.encode()))

    def _round_trip(self, topic: str, payload: bytes) -> ProbeOutcome:
        """Subscribes to `topic`, publishes `payload` to it and checks that it arrives unchanged."""
        if self.interrupted:
            return ProbeOutcome(OutcomeKind.INTERRUPTED)
        received: List[ReceivedMessage] = []

        with contextlib.ExitStack() as stack, self._arm(1) as latch:
            def on_message(message: ReceivedMessage):
                received.append(message)
                latch.signal()

            subscriber = self._connected(stack)
            try:
                subscriber.subscribe(topic, 1, on_message)
            except Exception as e:
                self._log_failure(e, f"Subscribe to a topic of {len(topic.encode())} bytes failed")
                return ProbeOutcome(OutcomeKind.SUBSCRIBE_FAILED, _reason(e))

            publisher = self._connected(stack)
            try:
                publisher.publish(topic, payload, qos=1)
            except Exception as e:
                self._log_failure(e, f"Publish of {len(payload)} bytes to a topic of {len(topic.encode())} bytes failed")
                return ProbeOutcome(OutcomeKind.PUBLISH_FAILED, _reason(e))

            try:
                if not latch.wait(self.config.timeout):
                    return ProbeOutcome(OutcomeKind.TIMEOUT)
            except WaitInterrupted:
                logger.warning(f"Interrupted while waiting for a publish of {len(payload)} bytes")
                return ProbeOutcome(OutcomeKind.INTERRUPTED)

        first = received[0]
        if first.payload != payload or first.topic != topic:
            return ProbeOutcome(OutcomeKind.WRONG_PAYLOAD)
        return ProbeOutcome(OutcomeKind.OK)

    def _client_id_trial(self, length: int) -> ProbeOutcome:
        return self._connect_with_id(filler(length))

    def _connect_with_id(self, client_id: str) -> ProbeOutcome:
        """Connects with exactly `client_id` and reports the CONNACK reason code."""
        if self.interrupted:
            return ProbeOutcome(OutcomeKind.INTERRUPTED)
        try:
            with self._session(client_id=client_id) as session:
                ack = session.connect()
        except ConnAckError as e:
            logger.debug(f"Client id of {len(client_id.encode())} bytes refused: {e.reason_code}")
            return ProbeOutcome(OutcomeKind.CONNECT_FAILED, e.reason_code)
        except Exception as e:
            self._log_failure(e, f"Connect with a client id of {len(client_id.encode())} bytes failed")
            return ProbeOutcome.undefined(_reason(e))
        return ProbeOutcome(OutcomeKind.OK, ack.reason_code)

    # --- Helpers ---

    def _session(self, client_id: Optional[str] = None) -> ProbeSession:
        return self._session_factory(self.config, client_id=client_id)

    def _connected(self, stack: contextlib.ExitStack, client_id: Optional[str] = None) -> ProbeSession:
        """Opens a session owned by `stack` and connects it."""
        session = stack.enter_context(self._session(client_id))
        session.connect()
        return session

    @contextlib.contextmanager
    def _arm(self, count: int) -> Iterator[SignalLatch]:
        latch = SignalLatch(count)
        with self._armed_lock:
            self._armed.add(latch)
        if self._interrupted.is_set():
            latch.interrupt()
        try:
            yield latch
        finally:
            with self._armed_lock:
                self._armed.discard(latch)

    def _topic(self) -> str:
        return generate_topic(self._max_topic_length)

    def _guarded(self, name: str, probe: Callable[[], ProbeOutcome]) -> ProbeOutcome:
        try:
            return probe()
        except Exception as e:
            return self._classify_failure(e, f"Probe '{name}' failed")

    def _classify_failure(self, exc: Exception, message: str) -> ProbeOutcome:
        """Maps a failure that escaped a probe body (usually while connecting) to an outcome."""
        self._log_failure(exc, message)
        if isinstance(exc, ConnAckError):
            return ProbeOutcome(OutcomeKind.CONNECT_FAILED, exc.reason_code)
        return ProbeOutcome.undefined(_reason(exc))

    def _log_failure(self, exc: Exception, message: str):
        if isinstance(exc, AcknowledgementError):
            logger.debug(f"{message}: {exc}")
        elif isinstance(exc, SessionError):
            logger.warning(f"{message}: {exc}")
        else:
            logger.error(f"{message}: {exc!r}", exc_info=exc if self.config.verbose else None)


def _reason(exc: Exception) -> str:
    if isinstance(exc, AcknowledgementError):
        return exc.reason_code
    return str(exc) or type(exc).__name__
