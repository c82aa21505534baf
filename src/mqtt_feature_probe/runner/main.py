"""
Main entry point for the MQTT feature probe.

This module is responsible for:
- Parsing command-line arguments and the YAML configuration.
- Configuring logging for the whole application.
- Building the FeatureProber and hooking Ctrl+C up to its interrupt.
- Running the probe suite in order and printing the report.
"""

import argparse
import logging
import signal
import sys

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from mqtt_feature_probe.probe.models import ResultBase
from mqtt_feature_probe.probe.prober import FeatureProber
from mqtt_feature_probe.runner.config_loader import SuiteSettings, connection_config_from, load_config, suite_settings_from
from mqtt_feature_probe.runner.report import render_json, render_report

LOG_FORMAT = '%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'

def setup_logging(level: str = "INFO", logfile: Optional[str] = None):
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(stream=sys.stderr)]
    if logfile:
        handlers.append(logging.FileHandler(logfile))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

logger = logging.getLogger(__name__)

def run_suite(prober: FeatureProber, settings: SuiteSettings) -> Dict[str, ResultBase]:
    """
    Runs the probes one after the other and collects their results.
    Stops after the connect probe if the broker cannot be reached, and
    after any probe once the prober has been interrupted.
    """
    results: Dict[str, ResultBase] = {}

    connect = prober.check_connect()
    results["connect"] = connect
    if not connect.outcome.ok:
        logger.error(f"Could not connect to the broker ({connect.outcome}), skipping remaining probes.")
        return results

    if settings.max_topic_length is not None:
        prober.set_max_topic_length(settings.max_topic_length)

    steps = []
    if settings.run_all:
        steps += [
            ("topic_length", prober.discover_topic_length),
            ("client_id_length", prober.discover_client_id_length),
            ("client_id_characters", prober.scan_client_id_characters),
        ]
    steps += [
        ("shared_subscription", prober.check_shared_subscription),
        ("retain", prober.check_retain),
        ("wildcards", prober.check_wildcards),
    ]
    steps += [(f"qos_{qos}", lambda qos=qos: prober.check_qos(qos, settings.qos_tries)) for qos in (0, 1, 2)]
    if settings.run_all:
        steps.append(("payload_size", lambda: prober.discover_payload_size(settings.max_payload_size)))

    for name, probe in steps:
        if prober.interrupted:
            logger.warning(f"Interrupted, skipping '{name}' and the probes after it.")
            break
        logger.info(f"Running probe '{name}'...")
        results[name] = probe()

    return results

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Probe an MQTT 5 broker for supported features and limits.")
    parser.add_argument("-c", "--config", default="config.yaml", help="YAML configuration file")
    parser.add_argument("--host", help="broker host (overrides the config file)")
    parser.add_argument("-p", "--port", type=int, help="broker port (overrides the config file)")
    parser.add_argument("-t", "--timeout", type=float, help="seconds to wait for each expected delivery")
    parser.add_argument("-a", "--all", action="store_true", help="also search payload, topic and client id limits")
    parser.add_argument("--json", action="store_true", help="print the results as JSON")
    return parser

def apply_overrides(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Returns a copy of `config` with the command-line options merged in."""
    mqtt_conf = dict(config.get('mqtt') or {})
    probe_conf = dict(config.get('probe') or {})
    if args.host is not None:
        mqtt_conf['host'] = args.host
    if args.port is not None:
        mqtt_conf['port'] = args.port
    if args.timeout is not None:
        probe_conf['timeout'] = args.timeout
    if args.all:
        probe_conf['all'] = True
    return {**config, 'mqtt': mqtt_conf, 'probe': probe_conf}

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(load_config(args.config), args)
        logging_conf = config.get('logging') or {}
        setup_logging(logging_conf.get('level', 'INFO'), logging_conf.get('file', None))
        if Path(args.config).exists():
            logger.info(f"Loaded configuration from {args.config}")
        else:
            logger.warning(f"Config file not found at {args.config}. Using defaults.")
        connection_config = connection_config_from(config)
        settings = suite_settings_from(config)
    # TypeError: a list or mapping where a number is expected
    except (OSError, TypeError, ValueError, yaml.YAMLError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    prober = FeatureProber(connection_config)
    logger.info(f"Probing {connection_config.host}:{connection_config.port}...")

    # Ctrl+C interrupts the waiting probe instead of killing the process mid-teardown
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: prober.interrupt())
    try:
        results = run_suite(prober, settings)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if args.json:
        print(render_json(results))
    else:
        print("\n".join(render_report(results)))

    return 0 if results["connect"].outcome.ok else 1

if __name__ == "__main__":
    sys.exit(main())
