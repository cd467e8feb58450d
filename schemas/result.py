"""
Agent Pipeline Result

Produced once per request by the chat agent and consumed by the model
call and by the trace coordinator. Immutable after creation.

A result is either normal or degraded. A degraded result carries the
fault that caused the fallback so callers can observe degradation
without parsing logs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from agents.intent import DEFAULT_INTENT, Intent
from agents.strategy import DEFAULT_STRATEGY, SamplingParameters, Strategy
from schemas.message import Conversation


@dataclass(frozen=True)
class AgentMetadata:
    context_used: bool = False
    processing_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context_used": self.context_used,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass(frozen=True)
class AgentResult:
    """
    Uniform output of the agent pipeline.

    Attributes:
        system_prompt: Prompt sent ahead of the conversation
        enhanced_messages: Conversation, possibly with a context message appended
        parameters: Sampling parameters for the model call
        intent: Resolved intent
        metadata: Context usage and timing
        fault: Exception that forced the safe default, if any
    """
    system_prompt: str
    enhanced_messages: Conversation
    parameters: SamplingParameters
    intent: Intent = DEFAULT_INTENT
    metadata: AgentMetadata = field(default_factory=AgentMetadata)
    fault: Optional[BaseException] = field(default=None, compare=False)

    @property
    def degraded(self) -> bool:
        """True when the pipeline fell back because of a fault or timeout."""
        return self.fault is not None

    @classmethod
    def safe_default(
        cls,
        conversation: Conversation,
        processing_time_ms: int = 0,
        fault: Optional[BaseException] = None,
        strategy: Strategy = DEFAULT_STRATEGY,
    ) -> "AgentResult":
        """Default strategy, original conversation, no context."""
        return cls(
            system_prompt=strategy.system_prompt,
            enhanced_messages=conversation,
            parameters=strategy.parameters,
            intent=DEFAULT_INTENT,
            metadata=AgentMetadata(context_used=False, processing_time_ms=processing_time_ms),
            fault=fault,
        )

    def to_metadata(self) -> Dict[str, Any]:
        """Flat, scalar-only view for trace attributes."""
        data: Dict[str, Any] = {
            "intent": self.intent.value,
            "temperature": self.parameters.temperature,
            "enhanced_message_count": len(self.enhanced_messages),
            "degraded": self.degraded,
        }
        data.update(self.metadata.to_dict())
        if self.fault is not None:
            data["fault"] = type(self.fault).__name__
        return data
