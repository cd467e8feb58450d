"""
LangChain Adapter

Encapsulates all LangChain logic for the model service.
Exposes StreamChunk / ModelStream only - NO LangChain objects leak out.

DESIGN RULES (LOCK THIS IN):
- LangChain stays INSIDE this module
- One chat model client per process, shared by all requests
- Sampling parameters are passed per call, never mutated on the client
"""

from typing import Any, AsyncIterator, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from agents.intent import extract_text
from llm.streaming import ChatModel, ModelRequest, ModelStream, StreamChunk
from schemas.message import Conversation, Role


def to_langchain_messages(system_prompt: str, conversation: Conversation) -> List[BaseMessage]:
    """System prompt first, then the conversation in order."""
    messages: List[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))

    for message in conversation:
        text = extract_text(message.content)
        if message.role is Role.SYSTEM:
            messages.append(SystemMessage(content=text))
        elif message.role is Role.ASSISTANT:
            messages.append(AIMessage(content=text))
        else:
            messages.append(HumanMessage(content=text))
    return messages


def to_stream_chunk(chunk: AIMessageChunk) -> StreamChunk:
    """Map a LangChain chunk to a StreamChunk."""
    content: Any = chunk.content
    text = content if isinstance(content, str) else extract_text(content)

    usage = None
    if chunk.usage_metadata:
        usage = {
            "input_tokens": chunk.usage_metadata.get("input_tokens"),
            "output_tokens": chunk.usage_metadata.get("output_tokens"),
            "total_tokens": chunk.usage_metadata.get("total_tokens"),
        }

    finish_reason = (chunk.response_metadata or {}).get("finish_reason")
    return StreamChunk(text=text, usage=usage, finish_reason=finish_reason)


class LangChainChatModel(ChatModel):
    """ChatModel backed by a LangChain chat model."""

    def __init__(self, llm: BaseChatModel, model_id: str):
        self._llm = llm
        self.model_id = model_id

    @classmethod
    def from_settings(cls, settings: Any) -> "LangChainChatModel":
        """Build the process-wide client from application settings."""
        if settings.model_provider == "azure":
            llm: BaseChatModel = AzureChatOpenAI(
                azure_deployment=settings.azure_openai_deployment_name,
                openai_api_version=settings.azure_openai_api_version,
                azure_endpoint=settings.azure_openai_endpoint,
                api_key=settings.azure_openai_api_key,
                stream_usage=True,
            )
        else:
            llm = ChatOpenAI(
                model=settings.model_id,
                api_key=settings.openai_api_key,
                stream_usage=True,
            )
        return cls(llm, model_id=settings.model_id)

    def stream(self, request: ModelRequest) -> ModelStream:
        messages = to_langchain_messages(request.system_prompt, request.messages)
        return ModelStream(self._chunks(messages, request.parameters.temperature))

    async def _chunks(
        self,
        messages: List[BaseMessage],
        temperature: Optional[float],
    ) -> AsyncIterator[StreamChunk]:
        async for chunk in self._llm.astream(messages, temperature=temperature):
            yield to_stream_chunk(chunk)
