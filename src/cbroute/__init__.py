"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

cbroute: smart LLM request router.

One OpenAI-compatible endpoint in front of OpenAI-, Anthropic-, Google- and
Ollama-shaped providers, with strategy-based routing, failover, health
tracking and budget accounting.
"""

from .errors import (
    AllProvidersFailed,
    AttemptFailure,
    BudgetExceededError,
    ConfigurationError,
    GatewayError,
    ModelNotFoundError,
    NoProvidersAvailable,
    PartialStreamFailure,
    ProviderError,
    ProviderProtocolError,
    ProviderTransportError,
)
from .gateway import Gateway
from .observability import (
    InMemoryOutcomeSink,
    LoggingOutcomeSink,
    OpenTelemetryOutcomeSink,
    OutcomeSink,
    PrometheusOutcomeSink,
    RequestOutcome,
    create_outcome_sink,
    list_outcome_sinks,
    register_outcome_sink,
)
from .providers import ProviderRegistry
from .routing import DEFAULT_ALIASES, ModelResolver, StrategyEngine, VirtualModel
from .runtime.orchestrator import Orchestrator
from .settings import GatewaySettings
from .types import (
    CallerIdentity,
    Candidate,
    CandidateList,
    CanonicalChunk,
    CanonicalResponse,
    HealthRecord,
    Message,
    ModelRate,
    ProviderDescriptor,
    RoutingConstraints,
    RoutingRequest,
    StreamErrorEvent,
    Usage,
)

__version__ = "0.1.0"


def create_gateway(settings: GatewaySettings | None = None, **kwargs) -> Gateway:
    """Build a gateway from explicit settings or `CBROUTE_*` environment variables."""
    return Gateway.from_settings(settings, **kwargs)


__all__ = [
    "__version__",
    "create_gateway",
    "Gateway",
    "GatewaySettings",
    "Orchestrator",
    "ProviderRegistry",
    "ModelResolver",
    "StrategyEngine",
    "VirtualModel",
    "DEFAULT_ALIASES",
    "RequestOutcome",
    "OutcomeSink",
    "LoggingOutcomeSink",
    "InMemoryOutcomeSink",
    "PrometheusOutcomeSink",
    "OpenTelemetryOutcomeSink",
    "create_outcome_sink",
    "register_outcome_sink",
    "list_outcome_sinks",
    "GatewayError",
    "ConfigurationError",
    "ModelNotFoundError",
    "NoProvidersAvailable",
    "BudgetExceededError",
    "ProviderError",
    "ProviderTransportError",
    "ProviderProtocolError",
    "PartialStreamFailure",
    "AllProvidersFailed",
    "AttemptFailure",
    "Message",
    "Usage",
    "ModelRate",
    "ProviderDescriptor",
    "RoutingConstraints",
    "CallerIdentity",
    "RoutingRequest",
    "Candidate",
    "CandidateList",
    "CanonicalChunk",
    "CanonicalResponse",
    "StreamErrorEvent",
    "HealthRecord",
]
