"""
Provider price tables.

Prices are USD per one million tokens. Costs are reported in cents, which is
what the ai_interactions table stores. Update the tables when the provider
changes its pricing; call sites only go through the functions below.
"""

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

EMBEDDING_PRICES: dict[str, float] = {
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
    "text-embedding-ada-002": 0.10,
}

CHAT_PRICES: dict[str, dict[str, float]] = {
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "gpt-4o": {"input": 5.00, "output": 15.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
}

TOKENS_PER_UNIT = 1_000_000


def embedding_cost_cents(tokens: int, model: str) -> float:
    """
    Cost of embedding `tokens` tokens with `model`, in cents.

    Unknown models are priced like the default embedding model.
    """
    price = EMBEDDING_PRICES.get(model, EMBEDDING_PRICES[DEFAULT_EMBEDDING_MODEL])
    return (max(tokens, 0) / TOKENS_PER_UNIT) * price * 100


def chat_cost_cents(input_tokens: int, output_tokens: int, model: str) -> float:
    """Cost of a chat completion in cents; unknown models cost 0."""
    prices = CHAT_PRICES.get(model)
    if prices is None:
        return 0.0
    input_cost = (max(input_tokens, 0) / TOKENS_PER_UNIT) * prices["input"]
    output_cost = (max(output_tokens, 0) / TOKENS_PER_UNIT) * prices["output"]
    return (input_cost + output_cost) * 100
