"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Error taxonomy for routing, upstream calls and budget enforcement.
"""

from __future__ import annotations

from dataclasses import dataclass

from .types import JSONObject


class GatewayError(RuntimeError):
    """Base error for the router. Carries its user-visible HTTP mapping."""

    status_code: int = 500
    error_type: str = "server_error"
    code: str | None = None

    def to_openai(self) -> JSONObject:
        """Render an OpenAI-compatible error body."""
        return {
            "error": {
                "message": str(self),
                "type": self.error_type,
                "code": self.code,
                "param": None,
            }
        }


class ConfigurationError(GatewayError):
    """Raised for invalid provider or runtime configuration."""

    code = "configuration_error"


class ModelNotFoundError(GatewayError):
    """Requested model is neither a known concrete model nor a virtual alias."""

    status_code = 404
    error_type = "invalid_request_error"
    code = "model_not_found"

    def __init__(self, model: str) -> None:
        super().__init__(f"The model '{model}' does not exist")
        self.model = model


class NoProvidersAvailable(GatewayError):
    """Every candidate was filtered out before any upstream call."""

    status_code = 503
    error_type = "service_unavailable"
    code = "no_providers_available"


class BudgetExceededError(GatewayError):
    """Caller budget is exhausted under the block policy."""

    status_code = 429
    error_type = "insufficient_quota"
    code = "budget_exceeded"

    def __init__(self, message: str, *, account: str | None = None) -> None:
        super().__init__(message)
        self.account = account


class ProviderError(GatewayError):
    """Base for failures attributed to one upstream provider."""

    status_code = 502
    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        provider_id: str | None = None,
        upstream_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.upstream_status = upstream_status

    @property
    def kind(self) -> str:
        return type(self).__name__


class ProviderTransportError(ProviderError):
    """Network failure, timeout or non-2xx status from an upstream."""

    code = "provider_transport_error"

    def __init__(
        self,
        message: str,
        *,
        provider_id: str | None = None,
        upstream_status: int | None = None,
        timeout: bool = False,
    ) -> None:
        super().__init__(message, provider_id=provider_id, upstream_status=upstream_status)
        self.timeout = timeout
        if timeout:
            self.status_code = 504


class ProviderProtocolError(ProviderError):
    """Upstream answered with a body or event the adapter cannot decode."""

    code = "provider_protocol_error"


class PartialStreamFailure(ProviderError):
    """Upstream failed after content had already been delivered downstream."""

    code = "partial_stream_failure"


@dataclass(frozen=True, slots=True)
class AttemptFailure:
    """Why one candidate attempt failed."""

    provider_id: str
    model_id: str
    kind: str
    message: str
    upstream_status: int | None = None
    timeout: bool = False

    def to_dict(self) -> JSONObject:
        return {
            "provider": self.provider_id,
            "model": self.model_id,
            "kind": self.kind,
            "message": self.message,
            "upstream_status": self.upstream_status,
        }


class AllProvidersFailed(GatewayError):
    """Every candidate failed before producing output."""

    status_code = 502
    error_type = "upstream_error"
    code = "all_providers_failed"

    def __init__(self, failures: list[AttemptFailure]) -> None:
        summary = "; ".join(f"{f.provider_id}/{f.model_id}: {f.message}" for f in failures)
        super().__init__(f"All providers failed ({summary})" if failures else "All providers failed")
        self.failures = list(failures)
        if failures and all(f.timeout for f in failures):
            self.status_code = 504

    def to_openai(self) -> JSONObject:
        body = super().to_openai()
        error = body["error"]
        if isinstance(error, dict):
            error["failures"] = [f.to_dict() for f in self.failures]
        return body
