"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Upstream HTTP transport on top of `httpx.AsyncClient`.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from .errors import ProviderError, ProviderProtocolError, ProviderTransportError
from .types import UpstreamCall


def classify_error(error: BaseException, *, provider_id: str) -> ProviderError:
    """Map transport-level exceptions into provider errors."""
    if isinstance(error, ProviderError):
        if error.provider_id is None:
            error.provider_id = provider_id
        return error
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ProviderTransportError(
            f"Upstream timed out: {error or type(error).__name__}",
            provider_id=provider_id,
            timeout=True,
        )
    if isinstance(error, (httpx.HTTPError, ConnectionError, OSError)):
        return ProviderTransportError(
            f"Upstream transport failed: {error or type(error).__name__}",
            provider_id=provider_id,
        )
    return ProviderProtocolError(str(error), provider_id=provider_id)


def _error_message(status: int, body: bytes) -> str:
    text = body.decode("utf-8", errors="replace").strip()
    try:
        row = json.loads(text)
    except ValueError:
        row = None
    if isinstance(row, dict):
        error = row.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"HTTP {status}: {error['message']}"
        if isinstance(error, str) and error:
            return f"HTTP {status}: {error}"
    return f"HTTP {status}: {text[:500]}" if text else f"HTTP {status}"


class UpstreamTransport:
    """Issue native calls built by protocol adapters."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=10.0),
        )

    async def send_json(self, call: UpstreamCall, *, provider_id: str) -> Any:
        """Send one unary call and return its decoded JSON body."""
        try:
            response = await self._client.request(
                call.method,
                call.url,
                headers=dict(call.headers),
                json=call.json_body,
            )
        except Exception as exc:
            raise classify_error(exc, provider_id=provider_id) from exc

        if response.status_code >= 400:
            raise ProviderTransportError(
                _error_message(response.status_code, response.content),
                provider_id=provider_id,
                upstream_status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderProtocolError(
                f"Malformed JSON body: {exc}", provider_id=provider_id
            ) from exc

    @asynccontextmanager
    async def open_stream(
        self,
        call: UpstreamCall,
        *,
        provider_id: str,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open one streaming call; yields the raw byte iterator once the status is OK."""
        request = self._client.build_request(
            call.method,
            call.url,
            headers=dict(call.headers),
            json=call.json_body,
        )
        try:
            response = await self._client.send(request, stream=True)
        except Exception as exc:
            raise classify_error(exc, provider_id=provider_id) from exc

        try:
            if response.status_code >= 400:
                body = await response.aread()
                raise ProviderTransportError(
                    _error_message(response.status_code, body),
                    provider_id=provider_id,
                    upstream_status=response.status_code,
                )
            yield self._iter_bytes(response, provider_id=provider_id)
        finally:
            await response.aclose()

    async def _iter_bytes(
        self,
        response: httpx.Response,
        *,
        provider_id: str,
    ) -> AsyncIterator[bytes]:
        try:
            async for data in response.aiter_bytes():
                if data:
                    yield data
        except httpx.HTTPError as exc:
            raise classify_error(exc, provider_id=provider_id) from exc

    async def probe(self, call: UpstreamCall, *, provider_id: str) -> None:
        """Run one lightweight health probe; raises on failure."""
        try:
            response = await self._client.request(
                call.method, call.url, headers=dict(call.headers)
            )
        except Exception as exc:
            raise classify_error(exc, provider_id=provider_id) from exc
        if response.status_code >= 400:
            raise ProviderTransportError(
                _error_message(response.status_code, response.content),
                provider_id=provider_id,
                upstream_status=response.status_code,
            )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
