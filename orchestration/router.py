"""
Chat Router

The single-direction flow controller for one chat request.

FLOW GUARANTEES (NON-NEGOTIABLE):
1. The root trace is opened before anything else happens
2. The agent pipeline runs EXACTLY ONCE and never raises
3. The generation is started BEFORE the model call is issued
4. The generation is finalized only by the completion channel
5. The handler returns as soon as the model's first chunk arrives
6. Raw exception text never reaches the client

FLOW:
Request → Trace → Parse → ChatAgent → Generation → Model stream → ChatStream
                                                        ↓ (later)
                                          completion → finalize → flush
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from agents.chat_agent import ChatAgent
from app.core.errors import InvalidChatRequest
from llm.streaming import ChatModel, ModelRequest
from observability.collector import TraceCollector
from orchestration.state import ChatFailure, ChatReply, ChatStream
from schemas.message import Conversation, conversation_to_dicts
from schemas.request import ChatRequest


logger = logging.getLogger(__name__)


GENERIC_FAILURE = "Internal server error"


class ChatRouter:
    """
    Entry point for serving a chat request.

    This is the glue, not the brain. It sequences the agent, the trace
    and the model call but makes no decisions of its own.
    """

    TRACE_NAME = "chat-request"
    GENERATION_NAME = "chat-completion"

    def __init__(
        self,
        agent: ChatAgent,
        model: ChatModel,
        collector: TraceCollector,
        environment: str = "local",
        history_limit: int = 10,
        user_id: str = "anonymous",
    ):
        """
        Initialize the router with injected dependencies.

        Args:
            agent: Intent-routing agent pipeline
            model: Process-wide model client
            collector: Process-wide trace collector
            environment: Environment label for traces
            history_limit: Messages kept in the trace input
            user_id: User label for traces
        """
        self._agent = agent
        self._model = model
        self._collector = collector
        self._environment = environment
        self._history_limit = history_limit
        self._user_id = user_id

    async def handle(self, raw_body: bytes) -> ChatReply:
        """
        Serve one chat request.

        Args:
            raw_body: JSON request body

        Returns:
            ChatStream when the model is streaming, ChatFailure otherwise.
        """
        trace = self._collector.start_trace(
            self.TRACE_NAME,
            metadata=self._request_metadata(),
            tags=["chat", self._environment],
            user_id=self._user_id,
        )
        logger.info(f"[{trace.id}] Chat request received")

        # =====================================================
        # STEP 1: PARSE
        # =====================================================
        try:
            conversation = self._parse(raw_body)
        except InvalidChatRequest as e:
            logger.info(f"[{trace.id}] Rejected malformed request")
            trace.fail(e, stage="parse")
            self._collector.flush(trace)
            return ChatFailure(e.status_code, e.message, trace.id)

        trace.set_attributes({"message_count": len(conversation)})
        trace.update_input({"messages": conversation_to_dicts(conversation, self._history_limit)})

        stage = "agent"
        try:
            # =====================================================
            # STEP 2: AGENT PIPELINE (never raises, may degrade)
            # =====================================================
            agent_result = await self._agent.process(conversation, tracer=trace)
            if agent_result.degraded:
                logger.warning(f"[{trace.id}] Agent pipeline degraded to defaults")
                trace.set_attributes({
                    "agent.degraded": True,
                    "agent.fault": type(agent_result.fault).__name__,
                })

            # =====================================================
            # STEP 3: GENERATION + MODEL CALL
            # =====================================================
            stage = "generation"
            trace.start_generation(self._model.model_id, agent_result, name=self.GENERATION_NAME)
            stream = self._model.stream(ModelRequest(
                model=self._model.model_id,
                messages=agent_result.enhanced_messages,
                system_prompt=agent_result.system_prompt,
                parameters=agent_result.parameters,
            ))
            await stream.open()
        except Exception as e:
            logger.error(f"[{trace.id}] Chat request failed during {stage}: {type(e).__name__}")
            trace.fail(e, stage=stage)
            self._collector.flush(trace)
            return ChatFailure(500, GENERIC_FAILURE, trace.id)

        # =====================================================
        # STEP 4: HAND OFF (trace settles when the stream ends)
        # =====================================================
        self._collector.follow(trace, stream.completion, release=stream.aclose)
        logger.info(f"[{trace.id}] Streaming response (intent={agent_result.intent.value})")
        return ChatStream(stream=stream, trace_id=trace.id, intent=agent_result.intent)

    def _request_metadata(self) -> Dict[str, Any]:
        return {
            "model": self._model.model_id,
            "operation": "chat",
            "environment": self._environment,
        }

    @staticmethod
    def _parse(raw_body: Optional[bytes]) -> Conversation:
        try:
            request = ChatRequest.model_validate_json(raw_body or b"")
        except ValidationError as e:
            raise InvalidChatRequest() from e
        if not request.messages:
            raise InvalidChatRequest()
        return request.to_conversation()
