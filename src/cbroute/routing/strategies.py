"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Routing strategy engine: filters and ranks (provider, model) candidates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Protocol

from ..cost.estimator import CostEstimator
from ..health.monitor import HealthMonitor
from ..providers.registry import ProviderRegistry
from ..runtime.contracts import BalancedWeights
from ..types import (
    Candidate,
    CandidateList,
    HealthRecord,
    ProviderDescriptor,
    RoutingConstraints,
)

logger = logging.getLogger("cbroute.routing")


@dataclass(frozen=True, slots=True)
class CandidateInfo:
    """One candidate joined with its live health and cost signals."""

    candidate: Candidate
    descriptor: ProviderDescriptor
    health: HealthRecord
    cost_per_1k: float
    blended_cost_per_1k: float
    order: int

    @property
    def latency_ms(self) -> float:
        return self.health.average_latency_ms

    @property
    def error_rate(self) -> float:
        return self.health.error_rate


class RankingStrategy(Protocol):
    """Orders already-filtered candidate rows, best first."""

    strategy_id: str

    def order(self, rows: Sequence[CandidateInfo]) -> list[CandidateInfo]: ...


@dataclass(slots=True)
class CostOptimizedStrategy:
    strategy_id: str = "cost_optimized"

    def order(self, rows: Sequence[CandidateInfo]) -> list[CandidateInfo]:
        return sorted(rows, key=lambda row: (row.blended_cost_per_1k, row.order))


@dataclass(slots=True)
class PerformanceFirstStrategy:
    strategy_id: str = "performance_first"

    def order(self, rows: Sequence[CandidateInfo]) -> list[CandidateInfo]:
        return sorted(rows, key=lambda row: (row.latency_ms, row.order))


@dataclass(slots=True)
class ReliabilityFirstStrategy:
    strategy_id: str = "reliability_first"

    def order(self, rows: Sequence[CandidateInfo]) -> list[CandidateInfo]:
        return sorted(rows, key=lambda row: (row.error_rate, row.latency_ms, row.order))


def _normalizer(values: Iterable[float]) -> Callable[[float], float]:
    values = list(values)
    low, high = min(values), max(values)
    span = high - low
    if span <= 0:
        return lambda _value: 0.0
    return lambda value: (value - low) / span


@dataclass(slots=True)
class BalancedStrategy:
    """Weighted score over min-max normalized cost, latency and error rate; lower wins."""

    weights: BalancedWeights = BalancedWeights()
    strategy_id: str = "balanced"

    def score(self, rows: Sequence[CandidateInfo]) -> dict[Candidate, float]:
        if not rows:
            return {}
        cost = _normalizer(row.cost_per_1k for row in rows)
        latency = _normalizer(row.latency_ms for row in rows)
        errors = _normalizer(row.error_rate for row in rows)
        w = self.weights
        return {
            row.candidate: (
                w.cost * cost(row.cost_per_1k)
                + w.latency * latency(row.latency_ms)
                + w.reliability * errors(row.error_rate)
            )
            for row in rows
        }

    def order(self, rows: Sequence[CandidateInfo]) -> list[CandidateInfo]:
        scores = self.score(rows)
        return sorted(rows, key=lambda row: (scores[row.candidate], row.order))


def default_strategies(weights: BalancedWeights | None = None) -> Mapping[str, RankingStrategy]:
    """Closed strategy table; `task_specific` is resolved by the engine."""
    balanced = BalancedStrategy(weights=weights or BalancedWeights())
    return MappingProxyType(
        {
            "cost_optimized": CostOptimizedStrategy(),
            "performance_first": PerformanceFirstStrategy(),
            "reliability_first": ReliabilityFirstStrategy(),
            "balanced": balanced,
        }
    )


class StrategyEngine:
    """
    Rank eligible candidates for one request.

    Filtering drops unhealthy providers, capability mismatches and candidates
    over the caller's cost or latency ceilings. Ties always fall back to
    provider registration order.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        monitor: HealthMonitor,
        estimator: CostEstimator,
        weights: BalancedWeights | None = None,
        strategies: Mapping[str, RankingStrategy] | None = None,
    ) -> None:
        self._registry = registry
        self._monitor = monitor
        self._estimator = estimator
        self._strategies = strategies or default_strategies(weights)

    def describe(
        self,
        candidates: Iterable[Candidate],
        *,
        prompt_tokens: int = 0,
        max_tokens: int = 0,
    ) -> list[CandidateInfo]:
        """Join candidates with descriptors, health snapshots and cost estimates."""
        order = {provider_id: index for index, provider_id in enumerate(self._registry.ids())}
        rows: list[CandidateInfo] = []
        for candidate in candidates:
            descriptor = self._registry.get(candidate.provider_id)
            if descriptor is None:
                continue
            rows.append(
                CandidateInfo(
                    candidate=candidate,
                    descriptor=descriptor,
                    health=self._monitor.get(candidate.provider_id),
                    cost_per_1k=self._estimator.per_1k(
                        candidate.provider_id, candidate.model_id, prompt_tokens, max_tokens
                    ),
                    blended_cost_per_1k=self._estimator.blended_per_1k(
                        candidate.provider_id, candidate.model_id
                    ),
                    order=order.get(candidate.provider_id, len(order)),
                )
            )
        return rows

    def all_candidates(self) -> list[Candidate]:
        return [
            Candidate(provider_id=descriptor.provider_id, model_id=model_id)
            for descriptor in self._registry.list()
            for model_id in descriptor.models
        ]

    def filter(
        self,
        rows: Iterable[CandidateInfo],
        constraints: RoutingConstraints,
        *,
        stream: bool = False,
    ) -> list[CandidateInfo]:
        """Drop ineligible rows, preserving input order."""
        kept: list[CandidateInfo] = []
        for row in rows:
            reason = self._rejection(row, constraints, stream=stream)
            if reason is None:
                kept.append(row)
            else:
                logger.debug("Filtered candidate %s: %s", row.candidate, reason)
        return kept

    @staticmethod
    def _rejection(
        row: CandidateInfo,
        constraints: RoutingConstraints,
        *,
        stream: bool,
    ) -> str | None:
        if not row.health.is_healthy:
            return "unhealthy"
        if (stream or constraints.require_streaming) and not row.descriptor.supports_streaming:
            return "streaming unsupported"
        if constraints.require_function_calling and not row.descriptor.supports_function_calling:
            return "function calling unsupported"
        if constraints.max_cost_per_1k is not None and row.cost_per_1k > constraints.max_cost_per_1k:
            return f"cost {row.cost_per_1k:.6f}/1k over {constraints.max_cost_per_1k:.6f}/1k"
        if (
            constraints.max_latency_ms is not None
            and row.latency_ms > 0
            and row.latency_ms > constraints.max_latency_ms
        ):
            return f"latency {row.latency_ms:.0f}ms over {constraints.max_latency_ms:.0f}ms"
        return None

    def order(
        self,
        rows: Sequence[CandidateInfo],
        *,
        strategy: str,
        task_type: str | None = None,
    ) -> list[CandidateInfo]:
        """Order eligible rows by strategy."""
        if strategy == "task_specific":
            balanced = self._strategies["balanced"]
            if task_type:
                tagged = [row for row in rows if task_type in row.descriptor.task_tags]
                if tagged:
                    return balanced.order(tagged)
                logger.info(
                    "No healthy provider tagged '%s'; ranking all providers", task_type
                )
                return balanced.order(rows)
            return balanced.order(rows)
        ranking = self._strategies.get(strategy)
        if ranking is None:
            raise ValueError(f"Unknown routing strategy '{strategy}'")
        return ranking.order(rows)

    def rank(
        self,
        constraints: RoutingConstraints,
        *,
        strategy: str,
        task_type: str | None = None,
        prompt_tokens: int = 0,
        max_tokens: int = 0,
        stream: bool = False,
    ) -> CandidateList:
        """Rank every registered (provider, model) pair for one virtual request."""
        rows = self.describe(
            self.all_candidates(), prompt_tokens=prompt_tokens, max_tokens=max_tokens
        )
        eligible = self.filter(rows, constraints, stream=stream)
        ranked = [row.candidate for row in self.order(eligible, strategy=strategy, task_type=task_type)]
        ranked = apply_preferred_providers(ranked, constraints.preferred_providers)
        return CandidateList(candidates=tuple(ranked), strategy=strategy, virtual=True)


def apply_preferred_providers(
    candidates: Sequence[Candidate],
    preferred: Sequence[str],
) -> list[Candidate]:
    """Move candidates of listed providers to the front, in listed order."""
    if not preferred:
        return list(candidates)
    wanted = [p.strip().lower() for p in preferred if p and p.strip()]
    front: list[Candidate] = []
    for provider_id in wanted:
        front.extend(c for c in candidates if c.provider_id == provider_id and c not in front)
    rest = [c for c in candidates if c not in front]
    return [*front, *rest]
