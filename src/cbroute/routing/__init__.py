"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: routing/__init__.py.
"""

from .resolver import DEFAULT_ALIASES, ModelResolver, VirtualModel, is_virtual_model
from .strategies import (
    BalancedStrategy,
    CandidateInfo,
    CostOptimizedStrategy,
    PerformanceFirstStrategy,
    RankingStrategy,
    ReliabilityFirstStrategy,
    StrategyEngine,
    apply_preferred_providers,
    default_strategies,
)

__all__ = [
    "DEFAULT_ALIASES",
    "ModelResolver",
    "VirtualModel",
    "is_virtual_model",
    "RankingStrategy",
    "CandidateInfo",
    "CostOptimizedStrategy",
    "PerformanceFirstStrategy",
    "ReliabilityFirstStrategy",
    "BalancedStrategy",
    "StrategyEngine",
    "apply_preferred_providers",
    "default_strategies",
]
