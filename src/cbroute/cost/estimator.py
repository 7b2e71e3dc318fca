"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Rate-card pricing for candidates and completed calls.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from ..providers.registry import ProviderRegistry
from ..types import Message, ModelRate, Usage

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4
REPLY_PRIMER_TOKENS = 2


def estimate_text_tokens(text: str) -> int:
    """Rough token count for text of unknown tokenizer."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_prompt_tokens(messages: Iterable[Message]) -> int:
    """Heuristic prompt size: ~4 characters per token plus per-message overhead."""
    total = 0
    count = 0
    for message in messages:
        total += estimate_text_tokens(message.content) + MESSAGE_OVERHEAD_TOKENS
        count += 1
    return total + REPLY_PRIMER_TOKENS if count else 0


class CostEstimator:
    """Prices (provider, model) pairs from the registry rate cards, in USD."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    def rate(self, provider_id: str, model_id: str) -> ModelRate:
        descriptor = self._registry.get(provider_id)
        rate = descriptor.rate_for(model_id) if descriptor is not None else None
        return rate or ModelRate()

    def estimate(
        self,
        provider_id: str,
        model_id: str,
        prompt_tokens: int,
        max_tokens: int,
    ) -> float:
        """Upper-bound cost assuming the full `max_tokens` is generated."""
        rate = self.rate(provider_id, model_id)
        return (
            max(prompt_tokens, 0) * rate.input_per_1k
            + max(max_tokens, 0) * rate.output_per_1k
        ) / 1000.0

    def actual(self, provider_id: str, model_id: str, usage: Usage) -> float:
        """Exact cost for reported usage."""
        rate = self.rate(provider_id, model_id)
        return (
            usage.prompt_tokens * rate.input_per_1k
            + usage.completion_tokens * rate.output_per_1k
        ) / 1000.0

    def per_1k(
        self,
        provider_id: str,
        model_id: str,
        prompt_tokens: int = 0,
        max_tokens: int = 0,
    ) -> float:
        """
        Estimated cost per 1k tokens for one call shape.

        Falls back to the blended input/output rate when the shape is empty.
        """
        tokens = max(prompt_tokens, 0) + max(max_tokens, 0)
        if tokens == 0:
            return self.rate(provider_id, model_id).blended_per_1k
        return self.estimate(provider_id, model_id, prompt_tokens, max_tokens) / tokens * 1000.0

    def blended_per_1k(self, provider_id: str, model_id: str) -> float:
        return self.rate(provider_id, model_id).blended_per_1k
