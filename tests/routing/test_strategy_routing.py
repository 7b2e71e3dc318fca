from __future__ import annotations

import pytest

from cbroute.cost import CostEstimator
from cbroute.errors import ModelNotFoundError
from cbroute.health import HealthMonitor, Outcome
from cbroute.providers import ProviderRegistry
from cbroute.routing import ModelResolver, StrategyEngine, VirtualModel, apply_preferred_providers
from cbroute.runtime.contracts import BalancedWeights, HealthPolicy
from cbroute.types import Candidate, RoutingConstraints

ROWS = [
    {
        "id": "openai",
        "type": "openai",
        "base_url": "https://api.openai.com/v1",
        "models": {"gpt-4o-mini": {"input_per_1k": 0.00025, "output_per_1k": 0.00025}},
        "supports_function_calling": True,
        "task_tags": ["general_chat"],
        "nominal_latency_ms": 900,
    },
    {
        "id": "anthropic",
        "type": "anthropic",
        "base_url": "https://api.anthropic.com",
        "models": {"claude-3-5-sonnet": {"input_per_1k": 0.003, "output_per_1k": 0.003}},
        "task_tags": ["coding", "analysis"],
        "nominal_latency_ms": 300,
    },
    {
        "id": "ollama",
        "type": "ollama",
        "base_url": "http://localhost:11434",
        "models": {"llama3": {"input_per_1k": 0.001, "output_per_1k": 0.001}},
        "supports_streaming": False,
        "nominal_latency_ms": 600,
    },
]


def _build(rows=None, *, weights: BalancedWeights | None = None, aliases=None):
    registry = ProviderRegistry.from_rows(rows or ROWS)
    monitor = HealthMonitor(HealthPolicy(max_consecutive_failures=1))
    for descriptor in registry.list():
        monitor.register(descriptor.provider_id, nominal_latency_ms=descriptor.nominal_latency_ms)
    engine = StrategyEngine(
        registry=registry,
        monitor=monitor,
        estimator=CostEstimator(registry),
        weights=weights,
    )
    kwargs = {"aliases": aliases} if aliases is not None else {}
    resolver = ModelResolver(registry=registry, engine=engine, **kwargs)
    return resolver, monitor


def _ids(candidates) -> list[str]:
    return [str(c) for c in candidates]


def test_auto_with_cost_optimized_picks_cheapest_provider():
    resolver, _ = _build()

    result = resolver.resolve("auto", RoutingConstraints(strategy="cost_optimized"))

    assert result.primary == Candidate("openai", "gpt-4o-mini")
    assert result.strategy == "cost_optimized"
    assert result.virtual is True
    assert _ids(result) == ["openai/gpt-4o-mini", "ollama/llama3", "anthropic/claude-3-5-sonnet"]


def test_equal_prices_fall_back_to_registration_order():
    rows = [dict(row, models={"m": {"input_per_1k": 0.001, "output_per_1k": 0.001}}) for row in ROWS]
    resolver, _ = _build(rows)

    tied = resolver.resolve("cb:cost-optimal")
    rows[2] = dict(rows[2], models={"m": {"input_per_1k": 0.0009, "output_per_1k": 0.001}})
    nudged, _ = _build(rows)

    assert _ids(tied) == ["openai/m", "anthropic/m", "ollama/m"]
    assert _ids(nudged.resolve("cb:cost-optimal")) == ["ollama/m", "openai/m", "anthropic/m"]


def test_fastest_orders_by_observed_latency():
    resolver, monitor = _build()

    assert _ids(resolver.resolve("cb:fastest")) == [
        "anthropic/claude-3-5-sonnet",
        "ollama/llama3",
        "openai/gpt-4o-mini",
    ]

    for _ in range(20):
        monitor.record("openai", Outcome(success=True, latency_ms=50.0))
    assert resolver.resolve("cb:fastest").primary == Candidate("openai", "gpt-4o-mini")


def test_reliability_first_prefers_lowest_error_rate():
    resolver, monitor = _build()
    monitor.record("anthropic", Outcome(success=False))
    monitor.record("anthropic", Outcome(success=True))

    result = resolver.resolve("auto", RoutingConstraints(strategy="reliability_first"))

    assert _ids(result)[-1] == "anthropic/claude-3-5-sonnet"
    assert result.primary == Candidate("ollama", "llama3")


def test_balanced_weights_trade_cost_against_latency():
    cheap_slow = [ROWS[0], dict(ROWS[1], nominal_latency_ms=100)]
    resolver, _ = _build(cheap_slow)
    latency_heavy, _ = _build(cheap_slow, weights=BalancedWeights(cost=0.1, latency=0.8, reliability=0.1))

    assert resolver.resolve("auto").primary == Candidate("openai", "gpt-4o-mini")
    assert latency_heavy.resolve("auto").primary == Candidate("anthropic", "claude-3-5-sonnet")


def test_unhealthy_providers_are_filtered_out():
    resolver, monitor = _build()
    monitor.record("openai", Outcome(success=False))
    monitor.record("openai", Outcome(success=False))

    assert "openai/gpt-4o-mini" not in _ids(resolver.resolve("auto"))


def test_constraints_filter_cost_latency_and_capabilities():
    resolver, _ = _build()

    cheap = resolver.resolve("auto", RoutingConstraints(max_cost_per_1k=0.001))
    fast = resolver.resolve("auto", RoutingConstraints(max_latency_ms=700))
    streamed = resolver.resolve("auto", stream=True)
    tools = resolver.resolve("auto", RoutingConstraints(require_function_calling=True))

    assert sorted(_ids(cheap)) == ["ollama/llama3", "openai/gpt-4o-mini"]
    assert sorted(_ids(fast)) == ["anthropic/claude-3-5-sonnet", "ollama/llama3"]
    assert "ollama/llama3" not in _ids(streamed)
    assert _ids(tools) == ["openai/gpt-4o-mini"]


def test_everything_filtered_yields_empty_candidate_list():
    resolver, _ = _build()

    result = resolver.resolve("auto", RoutingConstraints(max_cost_per_1k=0.0001))

    assert not result
    assert result.primary is None


def test_preferred_providers_move_to_front():
    resolver, _ = _build()

    result = resolver.resolve(
        "cb:cost-optimal", RoutingConstraints(preferred_providers=("Anthropic",))
    )

    assert result.primary == Candidate("anthropic", "claude-3-5-sonnet")
    assert apply_preferred_providers([Candidate("a", "x")], ()) == [Candidate("a", "x")]


def test_task_specific_ranks_tagged_providers_and_falls_back_to_all():
    resolver, _ = _build()

    coding = resolver.resolve("cb:coding")
    creative = resolver.resolve("cb:creative")

    assert _ids(coding) == ["anthropic/claude-3-5-sonnet"]
    assert coding.strategy == "task_specific"
    assert len(creative) == 3


def test_explicit_strategy_overrides_alias_default():
    resolver, _ = _build()

    result = resolver.resolve("cb:fastest", RoutingConstraints(strategy="cost_optimized"))

    assert result.strategy == "cost_optimized"
    assert result.primary == Candidate("openai", "gpt-4o-mini")


def test_concrete_model_keeps_primary_then_fallbacks_in_order():
    resolver, _ = _build()

    result = resolver.resolve(
        "gpt-4o-mini",
        RoutingConstraints(fallback_models=("anthropic/claude-3-5-sonnet", "nope", "llama3", "gpt-4o-mini")),
    )

    assert _ids(result) == ["openai/gpt-4o-mini", "anthropic/claude-3-5-sonnet", "ollama/llama3"]
    assert result.virtual is False


def test_concrete_primary_is_dropped_when_unhealthy():
    resolver, monitor = _build()
    monitor.record("openai", Outcome(success=False))
    monitor.record("openai", Outcome(success=False))

    result = resolver.resolve(
        "openai/gpt-4o-mini", RoutingConstraints(fallback_models=("claude-3-5-sonnet",))
    )

    assert _ids(result) == ["anthropic/claude-3-5-sonnet"]


def test_unknown_models_raise_model_not_found():
    resolver, _ = _build()

    with pytest.raises(ModelNotFoundError):
        resolver.resolve("gpt-9")
    with pytest.raises(ModelNotFoundError):
        resolver.resolve("cb:unknown")
    with pytest.raises(ModelNotFoundError):
        resolver.resolve("anthropic/gpt-4o-mini-typo")


def test_alias_table_is_injectable():
    resolver, _ = _build(aliases={"cb:cheap": VirtualModel("cb:cheap", "cost_optimized")})

    assert resolver.resolve("cb:cheap").primary == Candidate("openai", "gpt-4o-mini")
    assert [alias.name for alias in resolver.list_virtual_models()] == ["cb:cheap"]
    with pytest.raises(ModelNotFoundError):
        resolver.resolve("auto")
