"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

OpenAI-compatible HTTP surface built on FastAPI.

Routes:
- ``POST /v1/chat/completions`` (JSON or ``text/event-stream``)
- ``GET /v1/models``
- ``GET /v1/usage`` (charged-cost analytics)
- ``GET /health``
- ``GET /metrics`` (only with a Prometheus outcome sink)
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ..errors import GatewayError
from ..gateway import Gateway
from ..observability import PrometheusOutcomeSink
from ..runtime.streaming import ChunkStream
from ..settings import GatewaySettings
from ..types import CallerIdentity, JSONObject, StreamErrorEvent
from .schemas import ChatCompletionRequest

logger = logging.getLogger("cbroute.server")

PROVIDER_KEY_HEADER_PREFIX = "x-provider-key-"

CallerResolver = Callable[[Request, ChatCompletionRequest], CallerIdentity]


def default_caller_resolver(request: Request, body: ChatCompletionRequest) -> CallerIdentity:
    """Identity from `X-User-Id`/`X-Project-Id` headers, then the body `user` field."""
    user_id = request.headers.get("x-user-id") or body.user or "anonymous"
    project_id = request.headers.get("x-project-id") or None
    return CallerIdentity(user_id=user_id, project_id=project_id)


def provider_keys(request: Request) -> dict[str, str]:
    """Per-request BYOK keys from `X-Provider-Key-<provider>` headers."""
    keys: dict[str, str] = {}
    for name, value in request.headers.items():
        if name.startswith(PROVIDER_KEY_HEADER_PREFIX) and value:
            keys[name[len(PROVIDER_KEY_HEADER_PREFIX):]] = value
    return keys


def sse_frame(payload: JSONObject | str) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload, separators=(",", ":"))
    return f"data: {data}\n\n"


async def _event_stream(stream: ChunkStream) -> AsyncIterator[str]:
    try:
        async for event in stream.events:
            if isinstance(event, StreamErrorEvent):
                yield sse_frame(event.to_openai())
                return
            yield sse_frame(event.to_openai())
        yield sse_frame("[DONE]")
    finally:
        # No-op once the producer finished; on disconnect this cancels upstream.
        await asyncio.shield(stream.cancel())


def _validation_message(exc: RequestValidationError) -> tuple[str, str | None]:
    errors = exc.errors()
    if not errors:
        return "Invalid request body", None
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    param = ".".join(loc) or None
    message = first.get("msg", "Invalid request body")
    return (f"{param}: {message}" if param else message), param


def create_app(
    gateway: Gateway | None = None,
    *,
    settings: GatewaySettings | None = None,
    caller_resolver: CallerResolver = default_caller_resolver,
) -> FastAPI:
    """Build the FastAPI application around one gateway instance."""
    gateway = gateway or Gateway.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await gateway.start()
        try:
            yield
        finally:
            await gateway.stop()

    app = FastAPI(
        title="cbroute",
        description="Smart LLM request router with an OpenAI-compatible API",
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(_request: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse(exc.to_openai(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        message, param = _validation_message(exc)
        return JSONResponse(
            {
                "error": {
                    "message": message,
                    "type": "invalid_request_error",
                    "code": "invalid_request",
                    "param": param,
                }
            },
            status_code=400,
        )

    @app.post("/v1/chat/completions")
    async def chat_completions(body: ChatCompletionRequest, request: Request) -> Any:
        req = body.to_routing_request(
            caller=caller_resolver(request, body),
            api_keys=provider_keys(request),
        )
        if not req.stream:
            response = await gateway.complete(req)
            return JSONResponse(
                response.to_openai(),
                headers={"x-cbroute-provider": response.provider, "x-cbroute-model": response.model},
            )

        stream = await gateway.stream(req)
        first = await stream.first()
        headers = {
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
        if first is not None and not isinstance(first, StreamErrorEvent):
            headers["x-cbroute-provider"] = first.provider
            headers["x-cbroute-model"] = first.model
        return StreamingResponse(
            _event_stream(stream),
            media_type="text/event-stream",
            headers=headers,
        )

    @app.get("/v1/models")
    async def list_models() -> Any:
        return {"object": "list", "data": gateway.list_models()}

    @app.get("/v1/usage")
    async def usage(
        user: str | None = None,
        project: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> Any:
        try:
            analytics = gateway.usage(user_id=user, project_id=project, start=start, end=end)
        except ValueError as exc:
            return JSONResponse(
                {
                    "error": {
                        "message": str(exc),
                        "type": "invalid_request_error",
                        "code": "invalid_request",
                        "param": "start",
                    }
                },
                status_code=400,
            )
        return analytics.to_dict()

    @app.get("/health")
    async def health() -> Any:
        rows = gateway.health()
        healthy = sum(1 for row in rows.values() if row.is_healthy)
        if not rows:
            status = "no_providers"
        elif healthy == len(rows):
            status = "ok"
        elif healthy:
            status = "degraded"
        else:
            status = "unavailable"
        return {
            "status": status,
            "providers": {key: asdict(row) for key, row in rows.items()},
        }

    prometheus = next(
        (s for s in gateway.outcomes.sinks if isinstance(s, PrometheusOutcomeSink)), None
    )
    if prometheus is not None:

        @app.get("/metrics")
        async def metrics() -> Response:
            from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

            return Response(generate_latest(prometheus.registry), media_type=CONTENT_TYPE_LATEST)

    return app


def run(gateway: Gateway | None = None, *, settings: GatewaySettings | None = None, **kwargs: Any) -> None:
    """Serve the router under uvicorn."""
    import uvicorn

    settings = settings or (gateway.settings if gateway is not None else GatewaySettings.from_env())
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(gateway or Gateway.from_settings(settings))
    uvicorn.run(
        app,
        host=kwargs.pop("host", settings.host),
        port=kwargs.pop("port", settings.port),
        **kwargs,
    )
