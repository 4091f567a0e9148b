"""
Cost estimation for Routewise.

Token-count heuristics and per-million-token pricing, used both for
pre-flight estimates and for the actual cost of completed calls.
"""

import math
from typing import Optional, Sequence

from routewise.models import CostEstimate
from routewise.providers.base import TokenUsage
from routewise.schemas import ModelConfig, ModelPrice

DEFAULT_OUTPUT_TOKENS = 150
CHARS_PER_TOKEN = 4
TOKENS_PER_WORD = 1.3

_PER_MILLION = 1_000_000


def estimate_tokens(text: str) -> int:
    """
    Estimate the token count of a text.

    Takes the larger of a character-density and a word-density estimate
    so the result errs on the high side.
    """
    char_estimate = math.ceil(len(text) / CHARS_PER_TOKEN)
    word_estimate = math.ceil(len(text.split()) * TOKENS_PER_WORD)
    return max(char_estimate, word_estimate)


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    price: ModelPrice,
    model: str = "",
    provider: str = "",
    cached_input_tokens: Optional[int] = None,
) -> CostEstimate:
    """
    Calculate cost from token counts and pricing.

    Cached input tokens are billed at `cached_input_per_mtok` instead of the
    regular input rate. Without a cached rate they are not billed.
    """
    cached = cached_input_tokens or 0
    regular_input_tokens = max(input_tokens - cached, 0)

    input_cost = (regular_input_tokens / _PER_MILLION) * price.input_per_mtok

    cached_cost = 0.0
    if cached and price.cached_input_per_mtok is not None:
        cached_cost = (cached / _PER_MILLION) * price.cached_input_per_mtok

    output_cost = (output_tokens / _PER_MILLION) * price.output_per_mtok

    return CostEstimate(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=input_cost + cached_cost + output_cost,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        model=model,
        provider=provider,
        cached_input_cost=cached_cost,
        cached_input_tokens=cached,
    )


def estimate_cost(
    prompt: str,
    model: ModelConfig,
    provider_id: str,
    expected_output_tokens: Optional[int] = None,
) -> CostEstimate:
    """
    Estimate the cost of sending `prompt` to `model`.

    Unpriced models (local models, typically) cost nothing, so routing
    still works for them.
    """
    if model.price is None:
        return CostEstimate(
            input_cost=0.0,
            output_cost=0.0,
            total_cost=0.0,
            input_tokens=0,
            output_tokens=expected_output_tokens or 0,
            model=model.name,
            provider=provider_id,
        )

    input_tokens = estimate_tokens(prompt)
    output_tokens = (
        expected_output_tokens
        if expected_output_tokens is not None
        else DEFAULT_OUTPUT_TOKENS
    )
    return calculate_cost(input_tokens, output_tokens, model.price, model.name, provider_id)


def calculate_actual_cost(
    usage: TokenUsage,
    price: ModelPrice,
    model: str,
    provider_id: str,
) -> CostEstimate:
    """Cost of a completed call from the usage counters the provider reported."""
    return calculate_cost(
        usage.input_tokens,
        usage.output_tokens,
        price,
        model,
        provider_id,
        usage.cached_input_tokens,
    )


def compare_costs(
    prompt: str,
    models: Sequence[tuple[ModelConfig, str]],
    expected_output_tokens: Optional[int] = None,
) -> list[CostEstimate]:
    """Estimates for every (model, provider id) pair, cheapest first (stable)."""
    estimates = [
        estimate_cost(prompt, config, provider_id, expected_output_tokens)
        for config, provider_id in models
    ]
    return sorted(estimates, key=lambda e: e.total_cost)


def get_cheapest_model(
    prompt: str,
    models: Sequence[tuple[ModelConfig, str]],
    expected_output_tokens: Optional[int] = None,
) -> Optional[tuple[CostEstimate, int]]:
    """
    Find the cheapest model for a prompt.

    Returns:
        (estimate, index into `models`), or None for an empty list.
        Ties go to the earlier entry.
    """
    if not models:
        return None

    ranked = sorted(
        (
            (estimate_cost(prompt, config, provider_id, expected_output_tokens), index)
            for index, (config, provider_id) in enumerate(models)
        ),
        key=lambda pair: pair[0].total_cost,
    )
    return ranked[0]
