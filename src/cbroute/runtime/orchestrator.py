"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Execution orchestrator: resolve, select, attempt, stream or buffer, record.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from contextlib import AsyncExitStack
from dataclasses import dataclass, field, replace

from ..adapters.base import ProtocolAdapter, StreamDecoder
from ..adapters.registry import ADAPTERS
from ..cost.analytics import CostHistory, CostRecord
from ..cost.estimator import CostEstimator, estimate_prompt_tokens, estimate_text_tokens
from ..cost.ledger import BudgetLedger
from ..errors import (
    AllProvidersFailed,
    AttemptFailure,
    BudgetExceededError,
    GatewayError,
    ModelNotFoundError,
    NoProvidersAvailable,
    PartialStreamFailure,
    ProviderError,
    ProviderProtocolError,
)
from ..health.monitor import HealthMonitor, Outcome
from ..observability import OutcomeKind, OutcomeRecorder, RequestOutcome
from ..providers.registry import ProviderRegistry
from ..routing.resolver import ModelResolver
from ..transport import UpstreamTransport, classify_error
from ..types import (
    Candidate,
    CandidateList,
    CanonicalChunk,
    CanonicalResponse,
    ProviderDescriptor,
    RoutingRequest,
    StreamCompleted,
    StreamErrorEvent,
    UpstreamCall,
    Usage,
)
from .contracts import StreamPolicy, TimeoutPolicy
from .streaming import ChunkStream, Emit
from .timeouts import await_with_timeout, deadline_after, iter_with_idle_timeout, remaining_s

logger = logging.getLogger("cbroute.orchestrator")


@dataclass(frozen=True, slots=True)
class _Plan:
    """Routing decision fixed once per request."""

    candidates: CandidateList
    prompt_tokens: int
    max_tokens: int
    started_s: float


@dataclass(slots=True)
class _StreamState:
    """Progress of the candidate currently streaming."""

    candidate: Candidate
    started_s: float
    decoder: StreamDecoder
    emitted: bool = False
    completed: bool = False
    settled: bool = False
    text: list[str] = field(default_factory=list)


def _elapsed_ms(started_s: float) -> float:
    return (time.monotonic() - started_s) * 1000.0


class Orchestrator:
    """
    Drive one request across its candidate list.

    Moving to the next candidate is the only retry mechanism. Failures after
    any output reached the caller are never retried on another provider.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        resolver: ModelResolver,
        monitor: HealthMonitor,
        estimator: CostEstimator,
        ledger: BudgetLedger,
        transport: UpstreamTransport,
        outcomes: OutcomeRecorder | None = None,
        history: CostHistory | None = None,
        timeouts: TimeoutPolicy | None = None,
        stream_policy: StreamPolicy | None = None,
        adapters: Mapping[str, ProtocolAdapter] = ADAPTERS,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._monitor = monitor
        self._estimator = estimator
        self._ledger = ledger
        self._transport = transport
        self._outcomes = outcomes or OutcomeRecorder()
        self._history = history
        self._timeouts = timeouts or TimeoutPolicy()
        self._stream_policy = stream_policy or StreamPolicy()
        self._adapters = adapters

    # -- planning ---------------------------------------------------------

    async def _plan(self, req: RoutingRequest) -> _Plan:
        started = time.monotonic()
        prompt_tokens = estimate_prompt_tokens(req.messages)
        max_tokens = req.max_tokens or self._stream_policy.default_max_tokens
        try:
            await self._ledger.admit(req.caller)
            candidates = self._resolver.resolve(
                req.model,
                req.constraints,
                prompt_tokens=prompt_tokens,
                max_tokens=max_tokens,
                stream=req.stream,
            )
            if not candidates:
                raise NoProvidersAvailable(
                    f"No providers available for model '{req.model}' after filtering"
                )
        except (BudgetExceededError, ModelNotFoundError, NoProvidersAvailable) as exc:
            self._emit(
                req,
                "rejected",
                started_s=started,
                strategy=req.constraints.strategy,
                error=str(exc),
            )
            raise
        logger.debug(
            "Request %s resolved '%s' to %s (strategy=%s)",
            req.request_id,
            req.model,
            [str(c) for c in candidates],
            candidates.strategy,
        )
        return _Plan(
            candidates=candidates,
            prompt_tokens=prompt_tokens,
            max_tokens=max_tokens,
            started_s=started,
        )

    def _target(self, candidate: Candidate) -> tuple[ProviderDescriptor, ProtocolAdapter]:
        descriptor = self._registry.get(candidate.provider_id)
        if descriptor is None:
            raise ProviderProtocolError(
                "Provider is no longer registered", provider_id=candidate.provider_id
            )
        adapter = self._adapters.get(descriptor.provider_type)
        if adapter is None:
            raise ProviderProtocolError(
                f"No adapter for provider type '{descriptor.provider_type}'",
                provider_id=candidate.provider_id,
            )
        return descriptor, adapter

    def _fail_attempt(
        self,
        candidate: Candidate,
        error: ProviderError,
        failures: list[AttemptFailure],
        *,
        remaining: int,
    ) -> None:
        self._monitor.record(
            candidate.provider_id, Outcome(success=False, error_kind=error.kind)
        )
        failures.append(
            AttemptFailure(
                provider_id=candidate.provider_id,
                model_id=candidate.model_id,
                kind=error.kind,
                message=str(error),
                upstream_status=error.upstream_status,
                timeout=bool(getattr(error, "timeout", False)),
            )
        )
        if remaining:
            logger.warning(
                "Candidate %s failed before output (%s: %s); failing over, %d left",
                candidate,
                error.kind,
                error,
                remaining,
            )
        else:
            logger.warning(
                "Candidate %s failed before output (%s: %s); no candidates left",
                candidate,
                error.kind,
                error,
            )

    def _usage_or_estimate(self, usage: Usage | None, plan: _Plan, text: str) -> Usage:
        if usage is not None and usage.total_tokens > 0:
            if usage.completion_tokens == 0 and text:
                return replace(usage, completion_tokens=estimate_text_tokens(text))
            return usage
        return Usage(
            prompt_tokens=plan.prompt_tokens,
            completion_tokens=estimate_text_tokens(text),
        )

    async def _settle(
        self,
        req: RoutingRequest,
        plan: _Plan,
        candidate: Candidate,
        usage: Usage,
    ) -> float:
        cost = self._estimator.actual(candidate.provider_id, candidate.model_id, usage)
        await self._ledger.charge(req.caller.account, cost)
        if self._history is not None:
            self._history.record(
                CostRecord(
                    timestamp_s=time.time(),
                    user_id=req.caller.user_id,
                    project_id=req.caller.project_id,
                    provider_id=candidate.provider_id,
                    model_id=candidate.model_id,
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                    cost_usd=cost,
                )
            )
        return cost

    def _emit(
        self,
        req: RoutingRequest,
        outcome: OutcomeKind,
        *,
        started_s: float,
        plan: _Plan | None = None,
        candidate: Candidate | None = None,
        strategy: str | None = None,
        actual_cost: float | None = None,
        attempts: int = 0,
        failures: list[AttemptFailure] | None = None,
        error: str | None = None,
    ) -> None:
        estimate = None
        target = candidate or (plan.candidates.primary if plan is not None else None)
        if plan is not None and target is not None:
            estimate = self._estimator.estimate(
                target.provider_id, target.model_id, plan.prompt_tokens, plan.max_tokens
            )
        self._outcomes.emit(
            RequestOutcome(
                request_id=req.request_id,
                outcome=outcome,
                provider=candidate.provider_id if candidate else None,
                model=candidate.model_id if candidate else None,
                strategy=plan.candidates.strategy if plan is not None else strategy,
                cost_estimate=estimate,
                actual_cost=actual_cost,
                latency_ms=_elapsed_ms(started_s),
                attempts=attempts,
                stream=req.stream,
                failures=tuple(failures or ()),
                error=error,
            )
        )

    # -- buffered ---------------------------------------------------------

    async def complete(self, req: RoutingRequest) -> CanonicalResponse:
        """Run one non-streaming request with pre-output failover."""
        if req.stream:
            req = replace(req, stream=False)
        plan = await self._plan(req)
        failures: list[AttemptFailure] = []
        total = len(plan.candidates)

        for attempt, candidate in enumerate(plan.candidates, start=1):
            started = time.monotonic()
            try:
                descriptor, adapter = self._target(candidate)
                call = adapter.build_request(
                    req,
                    descriptor=descriptor,
                    model_id=candidate.model_id,
                    api_key=self._registry.api_key_for(descriptor, req.api_keys),
                    default_max_tokens=self._stream_policy.default_max_tokens,
                )
                body = await await_with_timeout(
                    self._transport.send_json(call, provider_id=candidate.provider_id),
                    self._timeouts.request_timeout_s,
                )
                response = adapter.parse_response(
                    body,
                    descriptor=descriptor,
                    model_id=candidate.model_id,
                    request_id=req.request_id,
                )
            except asyncio.CancelledError:
                self._emit(
                    req,
                    "cancelled",
                    started_s=plan.started_s,
                    plan=plan,
                    candidate=candidate,
                    attempts=attempt,
                    failures=failures,
                )
                raise
            except Exception as exc:
                error = classify_error(exc, provider_id=candidate.provider_id)
                self._fail_attempt(candidate, error, failures, remaining=total - attempt)
                continue

            self._monitor.record(
                candidate.provider_id,
                Outcome(success=True, latency_ms=_elapsed_ms(started)),
            )
            usage = self._usage_or_estimate(response.usage, plan, response.text)
            cost = await self._settle(req, plan, candidate, usage)
            self._emit(
                req,
                "success",
                started_s=plan.started_s,
                plan=plan,
                candidate=candidate,
                actual_cost=cost,
                attempts=attempt,
                failures=failures,
            )
            if usage != response.usage:
                response = replace(response, usage=usage)
            return response

        error = AllProvidersFailed(failures)
        self._emit(
            req,
            "failed",
            started_s=plan.started_s,
            plan=plan,
            attempts=total,
            failures=failures,
            error=str(error),
        )
        raise error

    # -- streaming --------------------------------------------------------

    async def stream(self, req: RoutingRequest) -> ChunkStream:
        """
        Start one streaming request and wait for its first event.

        Pre-output failures surface here as exceptions, so callers can still
        answer with a plain error response. Later failures arrive in-band as
        one `StreamErrorEvent`.
        """
        if not req.stream:
            req = replace(req, stream=True)
        plan = await self._plan(req)

        async def _producer(emit: Emit) -> None:
            await self._produce(req, plan, emit)

        stream = ChunkStream(producer=_producer, channel_size=self._stream_policy.channel_size)
        try:
            await stream.first()
        except BaseException:
            await stream.cancel()
            raise
        return stream

    async def _produce(self, req: RoutingRequest, plan: _Plan, emit: Emit) -> None:
        failures: list[AttemptFailure] = []
        total = len(plan.candidates)
        state: _StreamState | None = None
        attempt = 0
        try:
            for attempt, candidate in enumerate(plan.candidates, start=1):
                state = None
                try:
                    descriptor, adapter = self._target(candidate)
                    state = _StreamState(
                        candidate=candidate,
                        started_s=time.monotonic(),
                        decoder=adapter.stream_decoder(
                            descriptor=descriptor,
                            model_id=candidate.model_id,
                            request_id=req.request_id,
                        ),
                    )
                    call = adapter.build_request(
                        req,
                        descriptor=descriptor,
                        model_id=candidate.model_id,
                        api_key=self._registry.api_key_for(descriptor, req.api_keys),
                        default_max_tokens=self._stream_policy.default_max_tokens,
                    )
                    await self._relay(call, state, emit)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    error = classify_error(exc, provider_id=candidate.provider_id)
                    if state is not None and state.emitted:
                        await self._fail_partial(req, plan, state, error, attempt, failures, emit)
                        return
                    self._fail_attempt(candidate, error, failures, remaining=total - attempt)
                    continue

                self._monitor.record(
                    candidate.provider_id,
                    Outcome(success=True, latency_ms=_elapsed_ms(state.started_s)),
                )
                usage = self._usage_or_estimate(state.decoder.usage, plan, "".join(state.text))
                cost = await self._settle(req, plan, candidate, usage)
                self._emit(
                    req,
                    "success",
                    started_s=plan.started_s,
                    plan=plan,
                    candidate=candidate,
                    actual_cost=cost,
                    attempts=attempt,
                    failures=failures,
                )
                state.settled = True
                return
        except asyncio.CancelledError:
            await self._settle_cancelled(req, plan, state, attempt, failures)
            raise

        error = AllProvidersFailed(failures)
        self._emit(
            req,
            "failed",
            started_s=plan.started_s,
            plan=plan,
            attempts=total,
            failures=failures,
            error=str(error),
        )
        raise error

    async def _relay(self, call: UpstreamCall, state: _StreamState, emit: Emit) -> None:
        """Pump one upstream stream into the channel, one event at a time."""
        provider_id = state.candidate.provider_id
        deadline = deadline_after(self._timeouts.request_timeout_s)
        async with AsyncExitStack() as stack:
            chunks = await await_with_timeout(
                stack.enter_async_context(
                    self._transport.open_stream(call, provider_id=provider_id)
                ),
                remaining_s(deadline),
            )
            async for data in iter_with_idle_timeout(
                chunks,
                idle_timeout_s=self._timeouts.stream_idle_timeout_s,
                deadline=deadline,
            ):
                for raw in state.decoder.feed(data):
                    await self._deliver(state, raw, emit)
                if state.completed:
                    break
            else:
                for raw in state.decoder.flush():
                    await self._deliver(state, raw, emit)
        if not state.emitted:
            raise ProviderProtocolError(
                "Stream ended without any content", provider_id=provider_id
            )

    @staticmethod
    async def _deliver(state: _StreamState, raw: object, emit: Emit) -> None:
        if state.completed:
            return
        event = state.decoder.parse_stream_event(raw)
        if event is None:
            return
        if isinstance(event, StreamCompleted):
            state.completed = True
            return
        if isinstance(event, CanonicalChunk):
            await emit(event)
            state.emitted = True
            if event.text:
                state.text.append(event.text)
        if state.decoder.finished:
            state.completed = True

    async def _fail_partial(
        self,
        req: RoutingRequest,
        plan: _Plan,
        state: _StreamState,
        error: ProviderError,
        attempt: int,
        failures: list[AttemptFailure],
        emit: Emit,
    ) -> None:
        candidate = state.candidate
        partial = PartialStreamFailure(
            f"Stream from {candidate} failed after output: {error}",
            provider_id=candidate.provider_id,
            upstream_status=error.upstream_status,
        )
        logger.warning("%s", partial)
        self._monitor.record(
            candidate.provider_id, Outcome(success=False, error_kind=error.kind)
        )
        failures.append(
            AttemptFailure(
                provider_id=candidate.provider_id,
                model_id=candidate.model_id,
                kind=partial.kind,
                message=str(error),
                upstream_status=error.upstream_status,
                timeout=bool(getattr(error, "timeout", False)),
            )
        )
        usage = self._usage_or_estimate(state.decoder.usage, plan, "".join(state.text))
        cost = await self._settle(req, plan, candidate, usage)
        self._emit(
            req,
            "partial",
            started_s=plan.started_s,
            plan=plan,
            candidate=candidate,
            actual_cost=cost,
            attempts=attempt,
            failures=failures,
            error=str(partial),
        )
        state.settled = True
        await emit(
            StreamErrorEvent(
                message=str(partial),
                provider=candidate.provider_id,
                code=partial.code or "partial_stream_failure",
            )
        )

    async def _settle_cancelled(
        self,
        req: RoutingRequest,
        plan: _Plan,
        state: _StreamState | None,
        attempt: int,
        failures: list[AttemptFailure],
    ) -> None:
        """Account for a caller disconnect: the upstream call counts as a success."""
        if state is not None and state.settled:
            return
        cost = None
        candidate = state.candidate if state is not None else None
        try:
            if state is not None:
                self._monitor.record(
                    state.candidate.provider_id,
                    Outcome(success=True, latency_ms=_elapsed_ms(state.started_s)),
                )
                usage = self._usage_or_estimate(state.decoder.usage, plan, "".join(state.text))
                cost = await self._settle(req, plan, state.candidate, usage)
        except GatewayError:
            logger.exception("Failed to settle cancelled request %s", req.request_id)
        finally:
            logger.info("Request %s cancelled by caller", req.request_id)
            self._emit(
                req,
                "cancelled",
                started_s=plan.started_s,
                plan=plan,
                candidate=candidate,
                actual_cost=cost,
                attempts=attempt,
                failures=failures,
            )
