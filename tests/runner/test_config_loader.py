import pytest
import yaml

from mqtt_feature_probe.probe.models import TlsConfig
from mqtt_feature_probe.runner.config_loader import (
    SuiteSettings,
    connection_config_from,
    load_config,
    suite_settings_from,
)

@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "mqtt:\n"
        "  host: broker.example\n"
        "  port: '8883'\n"
        "  username: probe\n"
        "  password: secret\n"
        "  tls:\n"
        "    ca_certs: ca.pem\n"
        "probe:\n"
        "  timeout: 2.5\n"
        "  qos_tries: 50\n"
        "  all: true\n"
        "  max_topic_length: 128\n"
        "logging:\n"
        "  verbose: true\n"
    )
    return path

def test_missing_file_gives_defaults(tmp_path):
    config = load_config(str(tmp_path / "nope.yaml"))

    assert config == {}
    assert connection_config_from(config).host == "localhost"
    assert suite_settings_from(config) == SuiteSettings()

def test_full_file(config_file):
    config = load_config(str(config_file))
    connection = connection_config_from(config)
    settings = suite_settings_from(config)

    assert connection.host == "broker.example"
    assert connection.port == 8883
    assert connection.password == b"secret"
    assert connection.tls == TlsConfig(ca_certs="ca.pem")
    assert connection.timeout == 2.5
    assert connection.verbose is True
    assert settings == SuiteSettings(qos_tries=50, run_all=True, max_topic_length=128)

def test_tls_true_uses_system_cas():
    assert connection_config_from({"mqtt": {"tls": True}}).tls == TlsConfig()

def test_invalid_tls_section():
    with pytest.raises(ValueError):
        connection_config_from({"mqtt": {"tls": "yes please"}})

def test_timeout_must_be_positive():
    with pytest.raises(ValueError):
        connection_config_from({"probe": {"timeout": 0}})

def test_broken_yaml_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("mqtt: [unclosed\n")

    with pytest.raises(yaml.YAMLError):
        load_config(str(path))

def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ValueError):
        load_config(str(path))
