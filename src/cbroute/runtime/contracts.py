"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Typed runtime policies for routing, health and budget enforcement.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True, slots=True)
class HealthPolicy:
    """Smoothing and threshold semantics for provider health."""

    alpha: float = 0.2
    latency_alpha: float = 0.2
    error_rate_threshold: float = 0.5
    max_consecutive_failures: int = 5
    recovery_cooldown_s: float = 30.0


@dataclass(frozen=True, slots=True)
class ProbePolicy:
    """Background health probe schedule."""

    enabled: bool = True
    interval_s: float = 60.0
    timeout_s: float = 5.0


@dataclass(frozen=True, slots=True)
class TimeoutPolicy:
    """Timeout semantics for unary and stream operations."""

    request_timeout_s: float | None = 30.0
    stream_idle_timeout_s: float | None = 45.0


@dataclass(frozen=True, slots=True)
class BalancedWeights:
    """Weights for the balanced score over normalized cost, latency and error rate."""

    cost: float = 0.4
    latency: float = 0.3
    reliability: float = 0.3


@dataclass(frozen=True, slots=True)
class BudgetPolicy:
    """Budget enforcement mode and warning threshold."""

    mode: Literal["block", "warn"] = "block"
    warning_threshold: float = 0.8


@dataclass(frozen=True, slots=True)
class StreamPolicy:
    """Reader/writer channel sizing for streamed responses."""

    channel_size: int = 16
    default_max_tokens: int = 1024
