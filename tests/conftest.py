"""
Pytest Configuration and Fixtures for the mqtt_feature_probe project.

Shared fixtures for every test package: logging set-up and a small,
fast-timing connection configuration.
"""

import sys
import pytest
import logging

from mqtt_feature_probe.probe.models import ConnectionConfig

@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests.
    Because tests bypass main.py, this ensures our logs are formatted
    and visible exactly how we want them during test runs.
    """
    # Keep the same distance between levelname and the message as main.py
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    yield
    logger.removeHandler(handler)

@pytest.fixture
def connection_config():
    """A configuration with a short timeout so timeout paths stay fast."""
    return ConnectionConfig(host="localhost", port=1883, timeout=0.2)
