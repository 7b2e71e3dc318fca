"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Gateway runtime settings and explicit config loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .runtime.contracts import (
    BalancedWeights,
    BudgetPolicy,
    HealthPolicy,
    ProbePolicy,
    StreamPolicy,
    TimeoutPolicy,
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


def _env_optional_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    if raw.strip().lower() in {"", "none", "off"}:
        return None
    return float(raw)


@dataclass(frozen=True, slots=True)
class GatewaySettings:
    """Explicit settings used by the router components and the HTTP server."""

    providers_file: str | None = None

    request_timeout_s: float | None = 30.0
    stream_idle_timeout_s: float | None = 45.0
    stream_channel_size: int = 16
    default_max_tokens: int = 1024

    health_alpha: float = 0.2
    latency_alpha: float = 0.2
    error_rate_threshold: float = 0.5
    max_consecutive_failures: int = 5
    recovery_cooldown_s: float = 30.0
    probes_enabled: bool = True
    probe_interval_s: float = 60.0
    probe_timeout_s: float = 5.0

    weight_cost: float = 0.4
    weight_latency: float = 0.3
    weight_reliability: float = 0.3

    budget_mode: str = "block"
    budget_warning_threshold: float = 0.8
    budgets_file: str | None = None
    cost_history_days: int = 30

    usage_store: str = "inmemory"
    redis_url: str | None = None

    outcome_sinks: tuple[str, ...] = ("log",)

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> "GatewaySettings":
        """Load settings from `CBROUTE_*` environment variables."""
        return GatewaySettings(
            providers_file=os.getenv("CBROUTE_PROVIDERS_FILE"),
            request_timeout_s=_env_optional_float("CBROUTE_REQUEST_TIMEOUT_S", 30.0),
            stream_idle_timeout_s=_env_optional_float(
                "CBROUTE_STREAM_IDLE_TIMEOUT_S", 45.0
            ),
            stream_channel_size=int(os.getenv("CBROUTE_STREAM_CHANNEL_SIZE", "16")),
            default_max_tokens=int(os.getenv("CBROUTE_DEFAULT_MAX_TOKENS", "1024")),
            health_alpha=float(os.getenv("CBROUTE_HEALTH_ALPHA", "0.2")),
            latency_alpha=float(os.getenv("CBROUTE_LATENCY_ALPHA", "0.2")),
            error_rate_threshold=float(os.getenv("CBROUTE_ERROR_RATE_THRESHOLD", "0.5")),
            max_consecutive_failures=int(
                os.getenv("CBROUTE_MAX_CONSECUTIVE_FAILURES", "5")
            ),
            recovery_cooldown_s=float(os.getenv("CBROUTE_RECOVERY_COOLDOWN_S", "30")),
            probes_enabled=_env_bool("CBROUTE_PROBES_ENABLED", True),
            probe_interval_s=float(os.getenv("CBROUTE_PROBE_INTERVAL_S", "60")),
            probe_timeout_s=float(os.getenv("CBROUTE_PROBE_TIMEOUT_S", "5")),
            weight_cost=float(os.getenv("CBROUTE_WEIGHT_COST", "0.4")),
            weight_latency=float(os.getenv("CBROUTE_WEIGHT_LATENCY", "0.3")),
            weight_reliability=float(os.getenv("CBROUTE_WEIGHT_RELIABILITY", "0.3")),
            budget_mode=os.getenv("CBROUTE_BUDGET_MODE", "block").strip().lower(),
            budget_warning_threshold=float(
                os.getenv("CBROUTE_BUDGET_WARNING_THRESHOLD", "0.8")
            ),
            budgets_file=os.getenv("CBROUTE_BUDGETS_FILE"),
            cost_history_days=int(os.getenv("CBROUTE_COST_HISTORY_DAYS", "30")),
            usage_store=os.getenv("CBROUTE_USAGE_STORE", "inmemory").strip().lower(),
            redis_url=os.getenv("CBROUTE_REDIS_URL"),
            outcome_sinks=_env_list("CBROUTE_OUTCOME_SINKS", ("log",)),
            host=os.getenv("CBROUTE_HOST", "0.0.0.0"),
            port=int(os.getenv("CBROUTE_PORT", "8080")),
            log_level=os.getenv("CBROUTE_LOG_LEVEL", "INFO").upper(),
        )

    def health_policy(self) -> HealthPolicy:
        return HealthPolicy(
            alpha=self.health_alpha,
            latency_alpha=self.latency_alpha,
            error_rate_threshold=self.error_rate_threshold,
            max_consecutive_failures=self.max_consecutive_failures,
            recovery_cooldown_s=self.recovery_cooldown_s,
        )

    def probe_policy(self) -> ProbePolicy:
        return ProbePolicy(
            enabled=self.probes_enabled,
            interval_s=self.probe_interval_s,
            timeout_s=self.probe_timeout_s,
        )

    def timeout_policy(self) -> TimeoutPolicy:
        return TimeoutPolicy(
            request_timeout_s=self.request_timeout_s,
            stream_idle_timeout_s=self.stream_idle_timeout_s,
        )

    def balanced_weights(self) -> BalancedWeights:
        return BalancedWeights(
            cost=self.weight_cost,
            latency=self.weight_latency,
            reliability=self.weight_reliability,
        )

    def budget_policy(self) -> BudgetPolicy:
        mode = "warn" if self.budget_mode == "warn" else "block"
        return BudgetPolicy(mode=mode, warning_threshold=self.budget_warning_threshold)

    def stream_policy(self) -> StreamPolicy:
        return StreamPolicy(
            channel_size=self.stream_channel_size,
            default_max_tokens=self.default_max_tokens,
        )
