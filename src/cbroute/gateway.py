"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Gateway facade: wires registry, health, cost, routing and the orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date

import httpx

from .cost.analytics import CostAnalytics, CostHistory
from .cost.estimator import CostEstimator
from .cost.ledger import BudgetLedger, budgets_from_file
from .cost.stores import UsageStore, create_usage_store
from .health.monitor import HealthMonitor
from .health.prober import HealthProber
from .observability import OutcomeRecorder, OutcomeSink, create_outcome_sink
from .providers.registry import ProviderRegistry
from .routing.resolver import DEFAULT_ALIASES, ModelResolver, VirtualModel
from .routing.strategies import StrategyEngine
from .runtime.orchestrator import Orchestrator
from .runtime.streaming import ChunkStream
from .settings import GatewaySettings
from .transport import UpstreamTransport
from .types import CanonicalResponse, HealthRecord, JSONObject, ProviderDescriptor, RoutingRequest

logger = logging.getLogger("cbroute.gateway")


class Gateway:
    """
    One router instance: shared health table, ledger and upstream client.

    Requests run independently; only the health table and the ledger are
    shared between them.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        settings: GatewaySettings | None = None,
        transport: UpstreamTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
        usage_store: UsageStore | None = None,
        sinks: list[OutcomeSink] | None = None,
        aliases: Mapping[str, VirtualModel] = DEFAULT_ALIASES,
        monitor: HealthMonitor | None = None,
        cost_history: CostHistory | None = None,
    ) -> None:
        self.settings = settings or GatewaySettings()
        self.registry = registry
        self.transport = transport or UpstreamTransport(http_client)
        self.monitor = monitor or HealthMonitor(self.settings.health_policy())
        self._register_health(registry.list())
        self.estimator = CostEstimator(registry)
        self.ledger = BudgetLedger(
            usage_store or create_usage_store(
                self.settings.usage_store, redis_url=self.settings.redis_url
            ),
            self.settings.budget_policy(),
        )
        self.cost_history = cost_history or CostHistory(
            retention_days=self.settings.cost_history_days
        )
        self.engine = StrategyEngine(
            registry=registry,
            monitor=self.monitor,
            estimator=self.estimator,
            weights=self.settings.balanced_weights(),
        )
        self.resolver = ModelResolver(registry=registry, engine=self.engine, aliases=aliases)
        if sinks is None:
            sinks = [create_outcome_sink(sink_id) for sink_id in self.settings.outcome_sinks]
        self.outcomes = OutcomeRecorder(sinks)
        self.orchestrator = Orchestrator(
            registry=registry,
            resolver=self.resolver,
            monitor=self.monitor,
            estimator=self.estimator,
            ledger=self.ledger,
            transport=self.transport,
            outcomes=self.outcomes,
            history=self.cost_history,
            timeouts=self.settings.timeout_policy(),
            stream_policy=self.settings.stream_policy(),
        )
        self.prober = HealthProber(
            registry=registry,
            monitor=self.monitor,
            transport=self.transport,
            policy=self.settings.probe_policy(),
        )

    @classmethod
    def from_settings(cls, settings: GatewaySettings | None = None, **kwargs) -> "Gateway":
        """Build a gateway from settings, loading the provider and budget files when configured."""
        settings = settings or GatewaySettings.from_env()
        if settings.providers_file:
            registry = ProviderRegistry.from_file(settings.providers_file)
        else:
            logger.warning("No provider file configured; starting with an empty registry")
            registry = ProviderRegistry()
        gateway = cls(registry, settings=settings, **kwargs)
        if settings.budgets_file:
            gateway.ledger.load_budgets(budgets_from_file(settings.budgets_file))
        return gateway

    def _register_health(self, descriptors: Iterable[ProviderDescriptor]) -> None:
        for descriptor in descriptors:
            self.monitor.register(
                descriptor.provider_id, nominal_latency_ms=descriptor.nominal_latency_ms
            )

    def reload_providers(self, descriptors: Iterable[ProviderDescriptor]) -> None:
        """Swap the provider table. Health rows of removed providers are kept."""
        descriptors = list(descriptors)
        self.registry.reload(descriptors)
        self._register_health(descriptors)
        logger.info("Provider registry reloaded (%d providers)", len(descriptors))

    async def complete(self, req: RoutingRequest) -> CanonicalResponse:
        return await self.orchestrator.complete(req)

    async def stream(self, req: RoutingRequest) -> ChunkStream:
        return await self.orchestrator.stream(req)

    def list_models(self) -> list[JSONObject]:
        """OpenAI-shaped model rows: concrete models first, then virtual aliases."""
        rows: list[JSONObject] = []
        for descriptor in self.registry.list():
            for model_id in descriptor.models:
                rows.append(
                    {
                        "id": f"{descriptor.provider_id}/{model_id}",
                        "object": "model",
                        "created": 0,
                        "owned_by": descriptor.provider_id,
                    }
                )
        for alias in self.resolver.list_virtual_models():
            rows.append(
                {
                    "id": alias.name,
                    "object": "model",
                    "created": 0,
                    "owned_by": "cbroute",
                    "description": alias.description,
                }
            )
        return rows

    def usage(
        self,
        *,
        user_id: str | None = None,
        project_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> CostAnalytics:
        """Charged-cost analytics over an inclusive UTC day range."""
        return self.cost_history.analytics(
            user_id=user_id, project_id=project_id, start=start, end=end
        )

    def health(self) -> dict[str, HealthRecord]:
        known = set(self.registry.ids())
        return {key: row for key, row in self.monitor.snapshot().items() if key in known}

    async def start(self) -> None:
        if self.settings.probes_enabled and self.registry.ids() and not self.prober.is_running:
            await self.prober.start()

    async def stop(self) -> None:
        if self.prober.is_running:
            await self.prober.shutdown()
        await self.transport.aclose()
