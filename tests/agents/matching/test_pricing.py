"""
Tests for provider price tables.
"""
import pytest

from agents.matching.pricing import chat_cost_cents, embedding_cost_cents


class TestEmbeddingCost:
    """Tests for embedding cost estimation."""

    def test_small_model_price(self):
        # 1M tokens at $0.02 = 2 cents
        assert embedding_cost_cents(1_000_000, "text-embedding-3-small") == pytest.approx(2.0)

    def test_large_model_price(self):
        assert embedding_cost_cents(1_000_000, "text-embedding-3-large") == pytest.approx(13.0)

    def test_unknown_model_uses_default_price(self):
        assert embedding_cost_cents(500_000, "mystery-embedder") == embedding_cost_cents(
            500_000, "text-embedding-3-small"
        )

    def test_cost_is_non_decreasing_in_tokens(self):
        costs = [embedding_cost_cents(tokens, "text-embedding-3-small") for tokens in range(0, 5000, 250)]
        assert costs == sorted(costs)

    def test_zero_tokens_cost_nothing(self):
        assert embedding_cost_cents(0, "text-embedding-3-small") == 0.0


class TestChatCost:
    """Tests for chat cost estimation."""

    def test_gpt_4o_mini_price(self):
        # 1M input at $0.15 + 1M output at $0.60 = 75 cents
        assert chat_cost_cents(1_000_000, 1_000_000, "gpt-4o-mini") == pytest.approx(75.0)

    def test_output_tokens_cost_more_than_input(self):
        assert chat_cost_cents(0, 1000, "gpt-4o") > chat_cost_cents(1000, 0, "gpt-4o")

    def test_unknown_model_costs_nothing(self):
        assert chat_cost_cents(1000, 1000, "some-local-model") == 0.0

    def test_cost_is_deterministic(self):
        assert chat_cost_cents(1234, 567, "gpt-4-turbo") == chat_cost_cents(1234, 567, "gpt-4-turbo")
