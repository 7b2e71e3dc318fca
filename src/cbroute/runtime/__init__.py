"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/__init__.py.
"""

from .contracts import (
    BalancedWeights,
    BudgetPolicy,
    HealthPolicy,
    ProbePolicy,
    StreamPolicy,
    TimeoutPolicy,
)
from .streaming import ChunkStream
from .timeouts import await_with_timeout, iter_with_idle_timeout

__all__ = [
    "BalancedWeights",
    "BudgetPolicy",
    "HealthPolicy",
    "ProbePolicy",
    "StreamPolicy",
    "TimeoutPolicy",
    "ChunkStream",
    "await_with_timeout",
    "iter_with_idle_timeout",
]
