"""
The probing engine.
This package holds the ephemeral client sessions, the wait primitive fed by
delivery callbacks, the boundary search and the feature probes built on them.
"""
