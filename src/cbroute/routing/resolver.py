"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Virtual model resolver: turns the inbound `model` field into a candidate list.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from ..errors import ModelNotFoundError
from ..providers.registry import ProviderRegistry
from ..types import Candidate, CandidateList, RoutingConstraints
from .strategies import StrategyEngine

logger = logging.getLogger("cbroute.routing.resolver")

VIRTUAL_PREFIX = "cb:"


@dataclass(frozen=True, slots=True)
class VirtualModel:
    """Caller-facing alias resolved by strategy instead of a fixed provider."""

    name: str
    strategy: str
    task_type: str | None = None
    description: str = ""


DEFAULT_ALIASES: Mapping[str, VirtualModel] = MappingProxyType(
    {
        "auto": VirtualModel(
            "auto", "balanced", description="Balanced routing across all providers"
        ),
        "cb:smart-chat": VirtualModel(
            "cb:smart-chat",
            "balanced",
            "general_chat",
            "Balanced routing for general conversation",
        ),
        "cb:cost-optimal": VirtualModel(
            "cb:cost-optimal", "cost_optimized", description="Cheapest eligible model"
        ),
        "cb:fastest": VirtualModel(
            "cb:fastest", "performance_first", description="Lowest observed latency"
        ),
        "cb:coding": VirtualModel(
            "cb:coding", "task_specific", "coding", "Providers tagged for coding"
        ),
        "cb:analysis": VirtualModel(
            "cb:analysis", "task_specific", "analysis", "Providers tagged for analysis"
        ),
        "cb:creative": VirtualModel(
            "cb:creative", "task_specific", "creative", "Providers tagged for creative writing"
        ),
    }
)


def is_virtual_model(model: str) -> bool:
    return model == "auto" or model.startswith(VIRTUAL_PREFIX)


class ModelResolver:
    """
    Resolve concrete ids, `provider/model` pairs and virtual aliases.

    The alias table is injected so alternate alias sets can be substituted.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        engine: StrategyEngine,
        aliases: Mapping[str, VirtualModel] = DEFAULT_ALIASES,
    ) -> None:
        self._registry = registry
        self._engine = engine
        self.aliases = aliases

    def lookup(self, model: str) -> Candidate | None:
        """Map one concrete model string to a (provider, model) pair."""
        model = model.strip()
        if not model:
            return None
        if "/" in model:
            provider_id, _, model_id = model.partition("/")
            descriptor = self._registry.get(provider_id)
            if descriptor is not None and descriptor.supports_model(model_id):
                return Candidate(provider_id=descriptor.provider_id, model_id=model_id)
        descriptor = self._registry.find_model(model)
        if descriptor is None:
            return None
        return Candidate(provider_id=descriptor.provider_id, model_id=model)

    def _fallbacks(self, constraints: RoutingConstraints) -> list[Candidate]:
        rows: list[Candidate] = []
        for model in constraints.fallback_models:
            candidate = None if is_virtual_model(model) else self.lookup(model)
            if candidate is None:
                logger.warning("Ignoring unknown fallback model '%s'", model)
                continue
            rows.append(candidate)
        return rows

    def resolve(
        self,
        model: str,
        constraints: RoutingConstraints | None = None,
        *,
        prompt_tokens: int = 0,
        max_tokens: int = 0,
        stream: bool = False,
    ) -> CandidateList:
        """
        Build the ordered candidate list for one request.

        Raises `ModelNotFoundError` for unknown strings. An empty result means
        every candidate was filtered out.
        """
        constraints = constraints or RoutingConstraints()
        alias = self.aliases.get(model)

        if alias is not None:
            strategy = constraints.strategy or alias.strategy
            ranked = self._engine.rank(
                constraints,
                strategy=strategy,
                task_type=constraints.task_type or alias.task_type,
                prompt_tokens=prompt_tokens,
                max_tokens=max_tokens,
                stream=stream,
            )
            extra = self._eligible(
                self._fallbacks(constraints),
                constraints,
                prompt_tokens=prompt_tokens,
                max_tokens=max_tokens,
                stream=stream,
            )
            merged = list(ranked)
            merged.extend(c for c in extra if c not in merged)
            return CandidateList(candidates=tuple(merged), strategy=strategy, virtual=True)

        if is_virtual_model(model):
            raise ModelNotFoundError(model)
        primary = self.lookup(model)
        if primary is None:
            raise ModelNotFoundError(model)

        ordered: list[Candidate] = [primary]
        ordered.extend(c for c in self._fallbacks(constraints) if c not in ordered)
        eligible = self._eligible(
            ordered,
            constraints,
            prompt_tokens=prompt_tokens,
            max_tokens=max_tokens,
            stream=stream,
        )
        return CandidateList(
            candidates=tuple(eligible), strategy=constraints.strategy, virtual=False
        )

    def _eligible(
        self,
        candidates: list[Candidate],
        constraints: RoutingConstraints,
        *,
        prompt_tokens: int,
        max_tokens: int,
        stream: bool,
    ) -> list[Candidate]:
        rows = self._engine.describe(
            candidates, prompt_tokens=prompt_tokens, max_tokens=max_tokens
        )
        return [row.candidate for row in self._engine.filter(rows, constraints, stream=stream)]

    def list_virtual_models(self) -> list[VirtualModel]:
        return list(self.aliases.values())
