"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Per-request outcome events and the sinks that receive them.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Any, Literal, Protocol

from .errors import AttemptFailure, ConfigurationError
from .types import JSONObject

logger = logging.getLogger("cbroute.outcomes")

OutcomeKind = Literal["success", "failed", "partial", "cancelled", "rejected"]


@dataclass(frozen=True, slots=True)
class RequestOutcome:
    """Exactly one of these is emitted for every routed request."""

    request_id: str
    outcome: OutcomeKind
    provider: str | None = None
    model: str | None = None
    strategy: str | None = None
    cost_estimate: float | None = None
    actual_cost: float | None = None
    latency_ms: float | None = None
    attempts: int = 0
    stream: bool = False
    failures: tuple[AttemptFailure, ...] = ()
    error: str | None = None

    def to_dict(self) -> JSONObject:
        row = asdict(self)
        row["failures"] = [failure.to_dict() for failure in self.failures]
        return row


class OutcomeSink(Protocol):
    """Receives request outcome events."""

    def record_outcome(self, outcome: RequestOutcome) -> None: ...


class LoggingOutcomeSink:
    """Default sink: one structured log line per request."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def record_outcome(self, outcome: RequestOutcome) -> None:
        level = logging.INFO if outcome.outcome in ("success", "cancelled") else logging.WARNING
        self._log.log(level, "request outcome %s", json.dumps(outcome.to_dict(), sort_keys=True))


@dataclass(slots=True)
class InMemoryOutcomeSink:
    """Sink that keeps outcomes in process memory for tests."""

    outcomes: list[RequestOutcome] = field(default_factory=list)

    def record_outcome(self, outcome: RequestOutcome) -> None:
        self.outcomes.append(outcome)

    def last(self) -> RequestOutcome | None:
        return self.outcomes[-1] if self.outcomes else None

    def clear(self) -> None:
        self.outcomes.clear()


class PrometheusOutcomeSink:
    """
    Prometheus-backed outcome metrics.

    Requires `prometheus_client` package. Pass a dedicated `registry` to keep
    metrics out of the process-global default registry.
    """

    def __init__(self, *, namespace: str = "cbroute", registry: Any | None = None) -> None:
        try:
            from prometheus_client import REGISTRY, Counter, Histogram
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise ConfigurationError(
                "PrometheusOutcomeSink requires `prometheus_client` to be installed."
            ) from exc

        self.registry = registry if registry is not None else REGISTRY
        self._requests = Counter(
            "requests_total",
            "Routed requests by outcome",
            labelnames=("outcome", "provider", "strategy"),
            namespace=namespace,
            registry=self.registry,
        )
        self._attempt_failures = Counter(
            "attempt_failures_total",
            "Failed provider attempts by error kind",
            labelnames=("provider", "kind"),
            namespace=namespace,
            registry=self.registry,
        )
        self._cost = Counter(
            "cost_usd_total",
            "Charged cost in USD",
            labelnames=("provider",),
            namespace=namespace,
            registry=self.registry,
        )
        self._latency = Histogram(
            "request_latency_seconds",
            "End-to-end request latency",
            labelnames=("outcome",),
            namespace=namespace,
            registry=self.registry,
        )

    def record_outcome(self, outcome: RequestOutcome) -> None:
        provider = outcome.provider or "none"
        self._requests.labels(outcome.outcome, provider, outcome.strategy or "none").inc()
        for failure in outcome.failures:
            self._attempt_failures.labels(failure.provider_id, failure.kind).inc()
        if outcome.actual_cost:
            self._cost.labels(provider).inc(outcome.actual_cost)
        if outcome.latency_ms is not None:
            self._latency.labels(outcome.outcome).observe(outcome.latency_ms / 1000.0)


@dataclass(slots=True)
class OpenTelemetryOutcomeSink:
    """OpenTelemetry metrics sink with lazy meter initialization."""

    meter_name: str = "cbroute.router"

    _meter: Any = field(default=None, init=False, repr=False)
    _requests: Any = field(default=None, init=False, repr=False)
    _latency: Any = field(default=None, init=False, repr=False)
    _cost: Any = field(default=None, init=False, repr=False)

    def _ensure_meter(self) -> None:
        if self._meter is not None:
            return
        try:
            from opentelemetry import metrics
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise ConfigurationError(
                "OpenTelemetryOutcomeSink requires 'opentelemetry-api'"
            ) from exc
        self._meter = metrics.get_meter(self.meter_name)
        self._requests = self._meter.create_counter("cbroute.requests")
        self._latency = self._meter.create_histogram("cbroute.request.latency", unit="ms")
        self._cost = self._meter.create_histogram("cbroute.request.cost", unit="USD")

    def record_outcome(self, outcome: RequestOutcome) -> None:
        self._ensure_meter()
        attributes = {
            "outcome": outcome.outcome,
            "provider": outcome.provider or "none",
            "strategy": outcome.strategy or "none",
            "stream": outcome.stream,
        }
        self._requests.add(1, attributes=attributes)
        if outcome.latency_ms is not None:
            self._latency.record(float(outcome.latency_ms), attributes=attributes)
        if outcome.actual_cost is not None:
            self._cost.record(float(outcome.actual_cost), attributes=attributes)


class OutcomeRecorder:
    """Fans one outcome out to every sink; a failing sink never fails the request."""

    def __init__(self, sinks: list[OutcomeSink] | None = None) -> None:
        self.sinks: list[OutcomeSink] = list(sinks) if sinks is not None else [LoggingOutcomeSink()]

    def add_sink(self, sink: OutcomeSink) -> None:
        self.sinks.append(sink)

    def emit(self, outcome: RequestOutcome) -> None:
        for sink in self.sinks:
            try:
                sink.record_outcome(outcome)
            except Exception:  # noqa: BLE001
                logger.exception("Outcome sink %s failed", type(sink).__name__)


OutcomeSinkFactory = Callable[[], OutcomeSink]

_SINKS: dict[str, OutcomeSinkFactory] = {}
_SINKS_LOCK = Lock()


def register_outcome_sink(
    sink_id: str,
    factory: OutcomeSinkFactory,
    *,
    overwrite: bool = False,
) -> None:
    """Register one outcome sink factory by id."""
    key = sink_id.strip().lower()
    if not key:
        raise ConfigurationError("Outcome sink id must be non-empty")
    with _SINKS_LOCK:
        if key in _SINKS and not overwrite:
            raise ConfigurationError(f"Outcome sink already registered: {key}")
        _SINKS[key] = factory


def create_outcome_sink(sink: str | OutcomeSink) -> OutcomeSink:
    """Resolve a sink from id or pass through a sink instance."""
    if not isinstance(sink, str):
        return sink
    key = sink.strip().lower()
    with _SINKS_LOCK:
        factory = _SINKS.get(key)
    if factory is None:
        raise ConfigurationError(f"Unknown outcome sink '{sink}'")
    return factory()


def list_outcome_sinks() -> list[str]:
    with _SINKS_LOCK:
        return sorted(_SINKS.keys())


register_outcome_sink("log", LoggingOutcomeSink)
register_outcome_sink("inmemory", InMemoryOutcomeSink)
register_outcome_sink("prometheus", PrometheusOutcomeSink)
register_outcome_sink("otel", OpenTelemetryOutcomeSink)
