from __future__ import annotations

import pytest

from cbroute.cost import CostEstimator, estimate_prompt_tokens, estimate_text_tokens
from cbroute.providers import ProviderRegistry
from cbroute.types import Message, Usage


def _estimator() -> CostEstimator:
    registry = ProviderRegistry.from_rows(
        [
            {
                "id": "openai",
                "type": "openai",
                "base_url": "https://api.openai.com/v1",
                "models": {"gpt-4o-mini": {"input_per_1k": 0.00015, "output_per_1k": 0.0006}},
            }
        ]
    )
    return CostEstimator(registry)


def test_token_heuristic_counts_characters_and_message_overhead():
    messages = [Message(role="system", content="abcd"), Message(role="user", content="abcdefghi")]

    assert estimate_text_tokens("") == 0
    assert estimate_text_tokens("abcde") == 2
    assert estimate_prompt_tokens(messages) == (1 + 4) + (3 + 4) + 2
    assert estimate_prompt_tokens([]) == 0


def test_estimate_and_actual_use_rate_card():
    estimator = _estimator()

    assert estimator.estimate("openai", "gpt-4o-mini", 1000, 1000) == pytest.approx(0.00075)
    assert estimator.actual("openai", "gpt-4o-mini", Usage(prompt_tokens=2000, completion_tokens=500)) == pytest.approx(0.0006)


def test_per_1k_uses_call_shape_or_blended_rate():
    estimator = _estimator()

    assert estimator.per_1k("openai", "gpt-4o-mini") == pytest.approx(0.000375)
    assert estimator.per_1k("openai", "gpt-4o-mini", 3000, 1000) == pytest.approx(
        (3 * 0.00015 + 0.0006) / 4
    )


def test_unknown_model_is_free():
    estimator = _estimator()

    assert estimator.estimate("nope", "x", 1000, 1000) == 0.0
    assert estimator.blended_per_1k("openai", "unknown") == 0.0
