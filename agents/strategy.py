"""
Strategy Table

Intent -> (system prompt, sampling parameters).
Total lookup: every key resolves, unknown keys get DEFAULT_STRATEGY.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping

from agents.intent import Intent


@dataclass(frozen=True)
class SamplingParameters:
    """Model sampling parameters for one request."""
    temperature: float = 0.7

    def __post_init__(self) -> None:
        if not 0.0 <= self.temperature <= 1.0:
            raise ValueError(f"temperature must be within [0, 1], got {self.temperature}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Strategy:
    """How to answer one category of request."""
    system_prompt: str
    parameters: SamplingParameters = field(default_factory=SamplingParameters)


SYSTEM_PROMPTS: Mapping[Intent, str] = {
    Intent.HELP_REQUEST: "You are a technical support assistant. Answer concisely and specifically.",
    Intent.ORDER_INQUIRY: "You are an order assistant. Help with order information.",
    Intent.GENERAL_CHAT: "You are a friendly assistant. Communicate casually.",
}

DEFAULT_STRATEGY = Strategy(
    system_prompt="You are a helpful assistant.",
    parameters=SamplingParameters(temperature=0.7),
)

STRATEGIES: Mapping[Intent, Strategy] = {
    Intent.HELP_REQUEST: Strategy(
        system_prompt=SYSTEM_PROMPTS[Intent.HELP_REQUEST],
        parameters=SamplingParameters(temperature=0.3),
    ),
    Intent.ORDER_INQUIRY: Strategy(
        system_prompt=SYSTEM_PROMPTS[Intent.ORDER_INQUIRY],
        parameters=SamplingParameters(temperature=0.5),
    ),
    Intent.GENERAL_CHAT: Strategy(
        system_prompt=SYSTEM_PROMPTS[Intent.GENERAL_CHAT],
        parameters=SamplingParameters(temperature=0.8),
    ),
}


def select_strategy(intent: Any) -> Strategy:
    """Return the strategy for an intent, or DEFAULT_STRATEGY."""
    try:
        return STRATEGIES.get(intent, DEFAULT_STRATEGY)
    except TypeError:
        # unhashable key
        return DEFAULT_STRATEGY
