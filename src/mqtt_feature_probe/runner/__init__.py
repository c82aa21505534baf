"""
Command line runner.
Loads the YAML configuration, runs the probe suite in order and renders
the results for a human (or as JSON).
"""
