"""
Chat Agent

Turns a raw conversation into everything the model call needs:
system prompt, enhanced messages, sampling parameters, intent.

FLOW:
Conversation → Intent Classifier → Strategy Table → Context Enricher → AgentResult

DESIGN RULES:
- Never raises: faults and timeouts degrade to AgentResult.safe_default
- Never mutates the input conversation
- Each step is traced with counts, lengths and categories only
"""

import asyncio
import logging
import time
from typing import Optional

from agents.context import ContextProvider, StaticContextProvider
from agents.intent import classify_intent, last_message_text, preview
from agents.strategy import select_strategy
from observability.coordinator import NULL_TRACER, StepTracer
from schemas.message import Conversation, system_message
from schemas.result import AgentMetadata, AgentResult


logger = logging.getLogger(__name__)


class AgentTimeoutError(TimeoutError):
    """The agent pipeline exceeded its time budget."""


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class ChatAgent:
    """
    Intent-routing agent for chat requests.

    Returns an AgentResult for every input. When something goes wrong the
    result is the safe default with ``fault`` set, so the request can still
    be answered.
    """

    AGENT_NAME = "chat-agent"
    TIMEOUT_SECONDS = 10.0

    def __init__(
        self,
        context_provider: Optional[ContextProvider] = None,
        timeout_seconds: float = TIMEOUT_SECONDS,
        max_attempts: int = 1,
    ):
        """
        Initialize the agent.

        Args:
            context_provider: Source of supplementary context. Defaults to StaticContextProvider.
            timeout_seconds: Budget for one pipeline attempt
            max_attempts: Attempts before falling back (1 = no retry)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._context_provider = context_provider or StaticContextProvider()
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max_attempts

    async def process(
        self,
        conversation: Conversation,
        tracer: Optional[StepTracer] = None,
    ) -> AgentResult:
        """
        Run the pipeline.

        Args:
            conversation: Ordered messages, oldest first
            tracer: Opens spans for each step (no-op when omitted)

        Returns:
            AgentResult, possibly degraded. Never raises.
        """
        tracer = tracer or NULL_TRACER
        started = time.perf_counter()
        fault: Optional[BaseException] = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._run(conversation, tracer, started),
                    timeout=self._timeout_seconds,
                )
            except asyncio.TimeoutError:
                fault = AgentTimeoutError(
                    f"agent pipeline exceeded {self._timeout_seconds}s"
                )
                logger.warning(
                    f"Agent pipeline timed out (attempt {attempt}/{self._max_attempts})"
                )
            except Exception as e:
                fault = e
                logger.warning(
                    f"Agent pipeline failed (attempt {attempt}/{self._max_attempts}): "
                    f"{type(e).__name__}: {e}"
                )

        return AgentResult.safe_default(
            conversation,
            processing_time_ms=_elapsed_ms(started),
            fault=fault,
        )

    async def _run(
        self,
        conversation: Conversation,
        tracer: StepTracer,
        started: float,
    ) -> AgentResult:
        with tracer.span(self.AGENT_NAME, {"message_count": len(conversation)}) as agent_span:
            if not conversation:
                logger.info("No messages provided, using default configuration")
                agent_span.set_attributes({"short_circuit": "empty_conversation"})
                return AgentResult.safe_default(conversation, _elapsed_ms(started))

            text = last_message_text(conversation[-1])
            if not text:
                logger.info("Last message has no text content, using default configuration")
                agent_span.set_attributes({"short_circuit": "no_text"})
                return AgentResult.safe_default(conversation, _elapsed_ms(started))

            # Step 1: classify
            with tracer.span(
                "analyze-intent",
                {"input.length": len(text), "input.preview": preview(text)},
                parent=agent_span,
            ) as span:
                intent = classify_intent(text)
                span.set_attributes({"intent": intent.value})

            # Step 2: strategy
            with tracer.span("select-strategy", {"intent": intent.value}, parent=agent_span) as span:
                strategy = select_strategy(intent)
                span.set_attributes({"temperature": strategy.parameters.temperature})

            # Step 3: context
            with tracer.span("retrieve-context", {"intent": intent.value}, parent=agent_span) as span:
                enrichment = await self._context_provider.lookup(conversation, intent)
                span.set_attributes({
                    "context.used": enrichment.used,
                    "context.length": len(enrichment.text),
                })

            enhanced = conversation
            if enrichment.used:
                enhanced = conversation + (system_message(enrichment.text),)

            result = AgentResult(
                system_prompt=strategy.system_prompt,
                enhanced_messages=enhanced,
                parameters=strategy.parameters,
                intent=intent,
                metadata=AgentMetadata(
                    context_used=enrichment.used,
                    processing_time_ms=_elapsed_ms(started),
                ),
            )
            agent_span.set_attributes(result.to_metadata())
            logger.info(
                f"Intent resolved: {intent.value} (context_used={enrichment.used})"
            )
            return result
