"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Background health prober: periodic lightweight GETs against every provider.
"""

from __future__ import annotations

import asyncio
import logging

from ..adapters.registry import adapter_for
from ..errors import GatewayError
from ..providers.registry import ProviderRegistry
from ..runtime.contracts import ProbePolicy
from ..runtime.timeouts import await_with_timeout
from ..transport import UpstreamTransport, classify_error
from ..types import ProviderDescriptor
from .monitor import HealthMonitor

logger = logging.getLogger("cbroute.health.prober")


class HealthProber:
    """
    Probe loop that runs on its own schedule.

    Probes never share a lock with request handling; results reach the monitor
    through `HealthMonitor.record_probe` only.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        monitor: HealthMonitor,
        transport: UpstreamTransport,
        policy: ProbePolicy | None = None,
    ) -> None:
        self._registry = registry
        self._monitor = monitor
        self._transport = transport
        self._policy = policy or ProbePolicy()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            raise RuntimeError("HealthProber is already running")
        if self._policy.interval_s <= 0:
            raise ValueError("probe interval_s must be > 0")
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "HealthProber started (interval=%.1fs, timeout=%.1fs)",
            self._policy.interval_s,
            self._policy.timeout_s,
        )

    async def shutdown(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("HealthProber shut down")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.probe_all()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("Health probe round failed")
            await asyncio.sleep(self._policy.interval_s)

    async def probe_all(self) -> dict[str, bool]:
        """Probe every registered provider concurrently."""
        descriptors = self._registry.list()
        results = await asyncio.gather(*(self.probe(d) for d in descriptors))
        return {d.provider_id: ok for d, ok in zip(descriptors, results)}

    async def probe(self, descriptor: ProviderDescriptor) -> bool:
        """Run one probe and feed the result to the monitor."""
        provider_id = descriptor.provider_id
        try:
            adapter = adapter_for(descriptor.provider_type)
            call = adapter.build_probe(
                descriptor, api_key=self._registry.api_key_for(descriptor)
            )
            await await_with_timeout(
                self._transport.probe(call, provider_id=provider_id),
                self._policy.timeout_s,
            )
        except asyncio.CancelledError:
            raise
        except (GatewayError, asyncio.TimeoutError, OSError) as exc:
            error = classify_error(exc, provider_id=provider_id)
            logger.debug("Probe failed for provider %s: %s", provider_id, error)
            self._monitor.record_probe(provider_id, success=False, error_kind=error.kind)
            return False
        self._monitor.record_probe(provider_id, success=True)
        return True
