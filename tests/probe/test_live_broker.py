import socket

import pytest

from mqtt_feature_probe.probe.models import ConnectionConfig, OutcomeKind
from mqtt_feature_probe.probe.prober import FeatureProber

"""
Integration Tests against a real local broker (e.g. Mosquitto on localhost:1883).
Skipped when nothing listens on the port.
"""

HOST, PORT = "localhost", 1883

def broker_reachable() -> bool:
    try:
        with socket.create_connection((HOST, PORT), timeout=0.5):
            return True
    except OSError:
        return False

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not broker_reachable(), reason=f"no MQTT broker on {HOST}:{PORT}"),
]

@pytest.fixture
def live_prober():
    return FeatureProber(ConnectionConfig(host=HOST, port=PORT, timeout=3.0))

def test_connect_to_real_broker(live_prober):
    """
    Integration Test:
    1. Connects with a fresh client id.
    2. Verifies the broker's CONNACK was accepted and the session was open.
    """
    result = live_prober.check_connect()

    assert result.outcome.kind is OutcomeKind.OK
    assert result.connected is True
    assert result.ack.value == 0

def test_qos_round_trip_on_real_broker(live_prober):
    result = live_prober.check_qos(1, 5)

    assert result.received == 5
    assert result.outcome.kind is OutcomeKind.OK

def test_wildcards_on_real_broker(live_prober):
    result = live_prober.check_wildcards()

    assert result.single_level.kind is OutcomeKind.OK
    assert result.multi_level.kind is OutcomeKind.OK

def test_small_payload_search_on_real_broker(live_prober):
    """Any broker takes 64 byte payloads, so the optimistic first trial passes."""
    result = live_prober.discover_payload_size(64)

    assert result.boundary == 64
    assert len(result.trials) == 1
