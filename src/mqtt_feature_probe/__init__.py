"""
mqtt_feature_probe

This package probes a live MQTT v5 broker to find out which optional
features it supports and which limits it enforces, without relying on
what the broker advertises about itself.
"""
__version__ = "0.1.0"
