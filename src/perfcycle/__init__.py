"""Perfcycle - performance-review cycle engine.

This package drives multi-phase performance review cycles: the cycle phase
state machine, per-person review forms, calibration with an audit trail,
scheduled phase transitions with reminder escalation, and the event-driven
workflow that publishes results and archives them to HR records.
"""

__version__ = "0.1.0"
