"""
Phase 1 Tests: Verify package structure and module imports.
Ensures that the core application modules can be imported without syntax errors,
confirming correct package setup and path configuration.
"""

def test_probe_imports():
    """Assert that the probing engine modules can be imported without syntax errors."""
    try:
        import mqtt_feature_probe.probe.boundary
        import mqtt_feature_probe.probe.identifiers
        import mqtt_feature_probe.probe.latch
        import mqtt_feature_probe.probe.models
        import mqtt_feature_probe.probe.prober
        import mqtt_feature_probe.probe.session
        success = True
    except ImportError as e:
        success = False
        print(f"Probe Import Failed: {e}")
        
    assert success is True


def test_runner_imports():
    """Assert that the runner modules can be imported without syntax errors."""
    try:
        import mqtt_feature_probe.runner.config_loader
        import mqtt_feature_probe.runner.main
        import mqtt_feature_probe.runner.report
        success = True
    except ImportError as e:
        success = False
        print(f"Runner Import Failed: {e}")
        
    assert success is True
