"""
Fixtures for the probing engine tests.
"""
import pytest

from mqtt_feature_probe.probe.prober import FeatureProber

from fake_broker import FakeBroker


@pytest.fixture
def broker():
    return FakeBroker()

@pytest.fixture
def make_prober(connection_config):
    """Builds a FeatureProber that opens its sessions on the given fake broker."""
    def _make(fake_broker: FakeBroker, config=None) -> FeatureProber:
        return FeatureProber(config or connection_config, session_factory=fake_broker.session_factory)
    return _make

@pytest.fixture
def prober(broker, make_prober):
    return make_prober(broker)
