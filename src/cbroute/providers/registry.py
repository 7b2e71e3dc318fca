"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Thread-safe registry of provider descriptors.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from threading import Lock
from typing import Any

from ..errors import ConfigurationError
from ..types import PROVIDER_TYPES, ModelRate, ProviderDescriptor


def descriptor_from_mapping(row: Mapping[str, Any]) -> ProviderDescriptor:
    """Build one descriptor from a registry-file row."""
    provider_id = str(row.get("id") or "").strip().lower()
    if not provider_id:
        raise ConfigurationError("Provider id must be non-empty")

    provider_type = str(row.get("type") or "").strip().lower()
    if provider_type not in PROVIDER_TYPES:
        raise ConfigurationError(
            f"Provider '{provider_id}' has unknown type '{provider_type}'"
        )

    base_url = str(row.get("base_url") or "").rstrip("/")
    if not base_url:
        raise ConfigurationError(f"Provider '{provider_id}' is missing base_url")

    models = row.get("models") or {}
    if not isinstance(models, Mapping):
        raise ConfigurationError(f"Provider '{provider_id}' models must be an object")
    rates: dict[str, ModelRate] = {}
    for model_id, rate in models.items():
        rate = rate if isinstance(rate, Mapping) else {}
        rates[str(model_id)] = ModelRate(
            input_per_1k=float(rate.get("input_per_1k", 0.0)),
            output_per_1k=float(rate.get("output_per_1k", 0.0)),
        )

    nominal = row.get("nominal_latency_ms")
    headers = row.get("headers") if isinstance(row.get("headers"), Mapping) else {}
    return ProviderDescriptor(
        provider_id=provider_id,
        provider_type=provider_type,  # type: ignore[arg-type]
        base_url=base_url,
        rates=rates,
        supports_streaming=bool(row.get("supports_streaming", True)),
        supports_function_calling=bool(row.get("supports_function_calling", False)),
        task_tags=frozenset(str(tag) for tag in row.get("task_tags") or ()),
        nominal_latency_ms=float(nominal) if nominal is not None else None,
        api_key=row.get("api_key") if isinstance(row.get("api_key"), str) else None,
        api_key_env=row.get("api_key_env") if isinstance(row.get("api_key_env"), str) else None,
        headers={str(k): str(v) for k, v in headers.items()},
    )


class ProviderRegistry:
    """
    Ordered table of provider descriptors.

    Registration order is the deterministic tie-break used by routing. The
    router only reads from the registry; `reload` swaps the whole table.
    """

    def __init__(self, descriptors: Iterable[ProviderDescriptor] = ()) -> None:
        self._lock = Lock()
        self._rows: dict[str, ProviderDescriptor] = {}
        self.reload(descriptors)

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> "ProviderRegistry":
        return cls(descriptor_from_mapping(row) for row in rows)

    @classmethod
    def from_file(cls, path: str | Path) -> "ProviderRegistry":
        """Load descriptors from a JSON list file."""
        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot load provider file '{path}': {exc}") from exc
        if not isinstance(payload, list):
            raise ConfigurationError("Provider file must contain a JSON list")
        return cls.from_rows(payload)

    def reload(self, descriptors: Iterable[ProviderDescriptor]) -> None:
        rows: dict[str, ProviderDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.provider_id in rows:
                raise ConfigurationError(
                    f"Provider already registered: {descriptor.provider_id}"
                )
            rows[descriptor.provider_id] = descriptor
        with self._lock:
            self._rows = rows

    def get(self, provider_id: str) -> ProviderDescriptor | None:
        with self._lock:
            return self._rows.get(provider_id.strip().lower())

    def list(self) -> list[ProviderDescriptor]:
        """List descriptors in registration order."""
        with self._lock:
            return list(self._rows.values())

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._rows.keys())

    def order_of(self, provider_id: str) -> int:
        with self._lock:
            for index, key in enumerate(self._rows):
                if key == provider_id:
                    return index
        return len(self._rows)

    def find_model(self, model_id: str) -> ProviderDescriptor | None:
        """Return first registered provider listing `model_id`."""
        for descriptor in self.list():
            if descriptor.supports_model(model_id):
                return descriptor
        return None

    def api_key_for(
        self,
        descriptor: ProviderDescriptor,
        overrides: Mapping[str, str] | None = None,
    ) -> str | None:
        """Resolve credentials: per-request BYOK key, then inline key, then env var."""
        if overrides and overrides.get(descriptor.provider_id):
            return overrides[descriptor.provider_id]
        if descriptor.api_key:
            return descriptor.api_key
        if descriptor.api_key_env:
            return os.getenv(descriptor.api_key_env)
        return None
