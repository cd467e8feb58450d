"""Test doubles shared across the suite."""

import asyncio
from typing import Any, Dict, List, Optional

from app.core.config import Settings
from llm.streaming import ChatModel, ModelRequest, ModelStream, StreamChunk


DEFAULT_USAGE = {"input_tokens": 12, "output_tokens": 5, "total_tokens": 17}


class ScriptedChatModel(ChatModel):
    """
    Fake model service.

    Yields the scripted chunks, then a terminal chunk carrying usage and
    finish reason. Records every request it receives and counts streams
    closed before they were read to the end.
    """

    def __init__(
        self,
        chunks: Optional[List[str]] = None,
        usage: Optional[Dict[str, Any]] = DEFAULT_USAGE,
        finish_reason: Optional[str] = "stop",
        fail_on_open: Optional[Exception] = None,
        fail_after: Optional[int] = None,
        delay: float = 0.0,
    ):
        self.model_id = "gpt-4.1"
        self.chunks = ["Sure, ", "I can ", "help."] if chunks is None else chunks
        self.usage = usage
        self.finish_reason = finish_reason
        self.fail_on_open = fail_on_open
        self.fail_after = fail_after
        self.delay = delay
        self.requests: List[ModelRequest] = []
        self.released = 0

    def stream(self, request: ModelRequest) -> ModelStream:
        self.requests.append(request)
        return ModelStream(self._chunks())

    async def _chunks(self):
        if self.fail_on_open is not None:
            raise self.fail_on_open
        try:
            for index, text in enumerate(self.chunks):
                if self.fail_after is not None and index == self.fail_after:
                    raise RuntimeError("upstream connection reset")
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield StreamChunk(text=text)
            yield StreamChunk(usage=self.usage, finish_reason=self.finish_reason)
        except GeneratorExit:
            # closed before the last chunk was read
            self.released += 1
            raise


def make_settings(**overrides) -> Settings:
    values = dict(
        openai_api_key="sk-test",
        langfuse_public_key="pk-lf-test",
        langfuse_secret_key="sk-lf-test",
        environment="test",
        trace_ttl_seconds=2.0,
        flush_ceiling_seconds=2.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)
