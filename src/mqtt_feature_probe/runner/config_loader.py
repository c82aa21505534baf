"""
Configuration Loader.

Responsible for reading the config.yaml file and turning it into the
immutable settings the prober and the probe suite run with.
"""
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

from mqtt_feature_probe.probe.models import ConnectionConfig, TlsConfig

DEFAULT_MAX_PAYLOAD_SIZE = 100000

@dataclass(frozen=True, kw_only=True)
class SuiteSettings:
    """Which probes the runner performs, and with which parameters."""
    qos_tries: int = 10
    run_all: bool = False
    max_payload_size: int = DEFAULT_MAX_PAYLOAD_SIZE
    max_topic_length: Optional[int] = None

def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """
    Loads the YAML configuration file. A missing file yields an empty mapping.
    """
    path = Path(config_path)
    if not path.exists():
        return {}

    with open(path, 'r') as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(config).__name__}")
    return config

def connection_config_from(config: Dict[str, Any]) -> ConnectionConfig:
    """
    Builds the ConnectionConfig from the 'mqtt', 'probe' and 'logging' sections.
    """
    mqtt_conf = config.get('mqtt') or {}
    probe_conf = config.get('probe') or {}
    logging_conf = config.get('logging') or {}

    # Identity & Auth
    password = mqtt_conf.get('password', None)
    if isinstance(password, str):
        password = password.encode('utf-8')

    return ConnectionConfig(
        host=mqtt_conf.get('host', 'localhost'),
        port=int(mqtt_conf.get('port', 1883)), # Must be int
        username=mqtt_conf.get('username', None),
        password=password,
        tls=_tls_config_from(mqtt_conf.get('tls', None)),
        client_id=mqtt_conf.get('client_id', 'probe-'),
        keepalive=int(mqtt_conf.get('keepalive', 60)),
        timeout=_positive(float(probe_conf.get('timeout', 10)), 'probe.timeout'),
        verbose=bool(logging_conf.get('verbose', False)),
    )

def suite_settings_from(config: Dict[str, Any]) -> SuiteSettings:
    probe_conf = config.get('probe') or {}
    max_topic_length = probe_conf.get('max_topic_length', None)

    return SuiteSettings(
        qos_tries=int(probe_conf.get('qos_tries', 10)),
        run_all=bool(probe_conf.get('all', False)),
        max_payload_size=int(probe_conf.get('max_payload_size', DEFAULT_MAX_PAYLOAD_SIZE)),
        max_topic_length=int(max_topic_length) if max_topic_length is not None else None,
    )

def _tls_config_from(tls_conf) -> Optional[TlsConfig]:
    # `tls: true` means TLS against the system's trusted CAs
    if tls_conf is None or tls_conf is False:
        return None
    if tls_conf is True:
        return TlsConfig()
    if not isinstance(tls_conf, dict):
        raise ValueError(f"mqtt.tls must be a boolean or a mapping, got {tls_conf!r}")
    return TlsConfig(
        ca_certs=tls_conf.get('ca_certs', None),
        certfile=tls_conf.get('certfile', None),
        keyfile=tls_conf.get('keyfile', None),
        insecure=bool(tls_conf.get('insecure', False)),
    )

def _positive(value: float, name: str) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value
