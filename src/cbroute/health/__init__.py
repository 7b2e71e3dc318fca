"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: health/__init__.py.
"""

from .monitor import HealthMonitor, Outcome
from .prober import HealthProber

__all__ = ["HealthMonitor", "HealthProber", "Outcome"]
