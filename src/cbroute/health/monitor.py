"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: health/monitor.py.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from threading import Lock

from ..runtime.contracts import HealthPolicy
from ..types import HealthRecord

logger = logging.getLogger("cbroute.health")


@dataclass(slots=True)
class _State:
    """Mutable per-provider health row."""

    is_healthy: bool = True
    error_rate: float = 0.0
    average_latency_ms: float = 0.0
    latency_samples: int = 0
    last_check_s: float = 0.0
    consecutive_failures: int = 0
    unhealthy_since_s: float | None = None
    last_error: str | None = None


@dataclass(frozen=True, slots=True)
class Outcome:
    """One traffic outcome reported to the monitor."""

    success: bool
    latency_ms: float | None = None
    error_kind: str | None = None


class HealthMonitor:
    """
    Live health table, one row per provider.

    Updates are serialized per provider key. Rows are created on first use and
    never deleted. `record` feeds the traffic-derived error-rate EMA; probe
    results only move `consecutive_failures` and recovery.
    """

    def __init__(
        self,
        policy: HealthPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy or HealthPolicy()
        self._clock = clock
        self._wall_clock = wall_clock
        self._rows: dict[str, _State] = {}
        self._locks: dict[str, Lock] = {}
        self._table_lock = Lock()

    def register(self, provider_id: str, *, nominal_latency_ms: float | None = None) -> None:
        """Ensure a row exists, seeding latency with the configured nominal value."""
        with self._table_lock:
            if provider_id in self._rows:
                return
            self._rows[provider_id] = _State(average_latency_ms=float(nominal_latency_ms or 0.0))
            self._locks[provider_id] = Lock()

    def register_many(self, rows: Iterable[tuple[str, float | None]]) -> None:
        for provider_id, nominal in rows:
            self.register(provider_id, nominal_latency_ms=nominal)

    def _row(self, provider_id: str) -> tuple[_State, Lock]:
        self.register(provider_id)
        with self._table_lock:
            return self._rows[provider_id], self._locks[provider_id]

    def record(self, provider_id: str, outcome: Outcome) -> HealthRecord:
        """Apply one traffic outcome and return the updated snapshot."""
        policy = self.policy
        state, lock = self._row(provider_id)
        with lock:
            indicator = 0.0 if outcome.success else 1.0
            state.error_rate = policy.alpha * indicator + (1.0 - policy.alpha) * state.error_rate
            state.last_check_s = self._wall_clock()

            if outcome.latency_ms is not None:
                if state.latency_samples == 0 and state.average_latency_ms <= 0.0:
                    state.average_latency_ms = float(outcome.latency_ms)
                else:
                    state.average_latency_ms = (
                        policy.latency_alpha * float(outcome.latency_ms)
                        + (1.0 - policy.latency_alpha) * state.average_latency_ms
                    )
                state.latency_samples += 1

            if outcome.success:
                state.consecutive_failures = 0
            else:
                state.consecutive_failures += 1
                state.last_error = outcome.error_kind
                self._maybe_trip(provider_id, state)
            return self._snapshot(provider_id, state)

    def record_probe(
        self,
        provider_id: str,
        *,
        success: bool,
        error_kind: str | None = None,
    ) -> HealthRecord:
        """Apply one background probe result."""
        state, lock = self._row(provider_id)
        with lock:
            now = self._clock()
            state.last_check_s = self._wall_clock()
            if not success:
                state.consecutive_failures += 1
                state.last_error = error_kind
                self._maybe_trip(provider_id, state)
                return self._snapshot(provider_id, state)

            state.consecutive_failures = 0
            if not state.is_healthy:
                since = state.unhealthy_since_s if state.unhealthy_since_s is not None else now
                if now - since >= self.policy.recovery_cooldown_s:
                    state.is_healthy = True
                    state.unhealthy_since_s = None
                    logger.warning("Provider %s recovered after successful probe", provider_id)
            return self._snapshot(provider_id, state)

    def _maybe_trip(self, provider_id: str, state: _State) -> None:
        if not state.is_healthy:
            return
        policy = self.policy
        if (
            state.error_rate > policy.error_rate_threshold
            or state.consecutive_failures > policy.max_consecutive_failures
        ):
            state.is_healthy = False
            state.unhealthy_since_s = self._clock()
            logger.warning(
                "Provider %s marked unhealthy (error_rate=%.3f, consecutive_failures=%d)",
                provider_id,
                state.error_rate,
                state.consecutive_failures,
            )

    def get(self, provider_id: str) -> HealthRecord:
        state, lock = self._row(provider_id)
        with lock:
            return self._snapshot(provider_id, state)

    def snapshot(self) -> dict[str, HealthRecord]:
        with self._table_lock:
            keys = list(self._rows)
        return {key: self.get(key) for key in keys}

    @staticmethod
    def _snapshot(provider_id: str, state: _State) -> HealthRecord:
        return HealthRecord(
            provider_id=provider_id,
            is_healthy=state.is_healthy,
            error_rate=state.error_rate,
            average_latency_ms=state.average_latency_ms,
            last_check_timestamp=state.last_check_s,
            consecutive_failures=state.consecutive_failures,
            last_error=state.last_error,
        )
