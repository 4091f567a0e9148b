"""Tests for token estimation and cost calculation."""

import pytest

from routewise.pricing import (
    DEFAULT_OUTPUT_TOKENS,
    calculate_actual_cost,
    calculate_cost,
    compare_costs,
    estimate_cost,
    estimate_tokens,
    get_cheapest_model,
)
from routewise.providers.base import TokenUsage
from routewise.schemas import ModelConfig, ModelPrice


class TestEstimateTokens:
    """Test token estimation heuristics."""

    def test_character_density(self):
        """Long words are estimated from characters."""
        assert estimate_tokens("x" * 400) == 100

    def test_word_density(self):
        """Many short words are estimated from the word count."""
        # 7 chars -> 2 tokens, 4 words -> 6 tokens
        assert estimate_tokens("a b c d") == 6

    def test_empty(self):
        assert estimate_tokens("") == 0


class TestCalculateCost:
    """Test cost calculation from token counts."""

    def setup_method(self):
        self.price = ModelPrice(input_per_mtok=2.0, output_per_mtok=8.0, cached_input_per_mtok=0.5)

    def test_basic_cost(self):
        """Input and output are billed at their per-million rates."""
        cost = calculate_cost(1_000_000, 500_000, self.price, "m", "p")
        assert cost.input_cost == pytest.approx(2.0)
        assert cost.output_cost == pytest.approx(4.0)
        assert cost.total_cost == pytest.approx(6.0)
        assert cost.model == "m"
        assert cost.provider == "p"

    def test_cached_input_billed_at_cached_rate(self):
        """Cached tokens are split out of the regular input rate."""
        cost = calculate_cost(1_000_000, 0, self.price, cached_input_tokens=400_000)
        assert cost.input_cost == pytest.approx(1.2)
        assert cost.cached_input_cost == pytest.approx(0.2)
        assert cost.total_cost == pytest.approx(1.4)

    def test_cached_input_without_cached_rate(self):
        """Without a cached rate, cached tokens are free."""
        price = ModelPrice(input_per_mtok=2.0, output_per_mtok=8.0)
        cost = calculate_cost(1_000_000, 0, price, cached_input_tokens=400_000)
        assert cost.total_cost == pytest.approx(1.2)

    def test_actual_cost_uses_usage(self):
        """Actual cost reads the provider usage counters."""
        usage = TokenUsage(input_tokens=500_000, output_tokens=250_000)
        cost = calculate_actual_cost(usage, self.price, "m", "p")
        assert cost.total_cost == pytest.approx(3.0)
        assert cost.input_tokens == 500_000
        assert cost.output_tokens == 250_000


class TestEstimateCost:
    """Test pre-flight cost estimates."""

    def test_unpriced_model_is_free(self):
        """Local models without pricing cost nothing."""
        model = ModelConfig(name="llama3.1:8b", caps={"local"})
        estimate = estimate_cost("hello there", model, "ollama")
        assert estimate.total_cost == 0.0
        assert estimate.provider == "ollama"

    def test_priced_model_uses_default_output(self):
        """Default expected output is used when none is given."""
        model = ModelConfig(name="m", price=ModelPrice(1.0, 2.0))
        estimate = estimate_cost("x" * 400, model, "p")
        assert estimate.input_tokens == 100
        assert estimate.output_tokens == DEFAULT_OUTPUT_TOKENS
        assert estimate.total_cost == pytest.approx(100 / 1e6 + 150 * 2 / 1e6)

    def test_explicit_expected_output(self):
        model = ModelConfig(name="m", price=ModelPrice(1.0, 2.0))
        estimate = estimate_cost("x" * 400, model, "p", expected_output_tokens=0)
        assert estimate.output_tokens == 0
        assert estimate.total_cost == pytest.approx(100 / 1e6)


class TestComparison:
    """Test cheapest-model selection."""

    def setup_method(self):
        self.models = [
            (ModelConfig(name="big", price=ModelPrice(10.0, 30.0)), "openai"),
            (ModelConfig(name="small", price=ModelPrice(0.15, 0.6)), "openai"),
            (ModelConfig(name="local-a"), "ollama"),
            (ModelConfig(name="local-b"), "ollama"),
        ]

    def test_compare_costs_sorted(self):
        """Estimates come back cheapest first, ties in input order."""
        estimates = compare_costs("Explain closures", self.models)
        assert [e.model for e in estimates] == ["local-a", "local-b", "small", "big"]

    def test_cheapest_model_tie_goes_to_first(self):
        """Equal costs pick the earlier entry."""
        estimate, index = get_cheapest_model("Explain closures", self.models)
        assert index == 2
        assert estimate.model == "local-a"

    def test_cheapest_model_empty(self):
        assert get_cheapest_model("anything", []) is None
