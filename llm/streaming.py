"""
Streaming Model Contract

The model service is an opaque collaborator: it accepts a request and
yields text chunks, then one terminal completion event.

ModelStream turns that into two channels:
- iter_text(): text deltas for the transport layer
- completion: an asyncio.Future resolved with the CompletionEvent once the
  stream ends (or rejected with the error / StreamAbandoned)

The completion future is what the trace coordinator waits on. It is set
from inside the stream, after the request handler has already returned.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from agents.strategy import SamplingParameters
from schemas.message import Conversation


logger = logging.getLogger(__name__)


class StreamAbandoned(Exception):
    """The consumer stopped reading before the model finished."""


@dataclass(frozen=True)
class StreamChunk:
    """One increment from the model service."""
    text: str = ""
    usage: Optional[Dict[str, Any]] = None
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class CompletionEvent:
    """Terminal event of a model stream."""
    text: str
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ModelRequest:
    """Everything the model service needs for one call."""
    model: str
    messages: Conversation
    system_prompt: str
    parameters: SamplingParameters


def _retrieve(future: asyncio.Future) -> None:
    # Mark the exception as retrieved; the coordinator may have stopped waiting.
    if not future.cancelled():
        future.exception()


class ModelStream:
    """
    Lazy text stream with a completion channel.

    Must be created inside a running event loop.
    """

    def __init__(self, source: AsyncIterable[StreamChunk]):
        self._source = source
        self._iterator: Optional[AsyncIterator[StreamChunk]] = None
        self._first: Optional[StreamChunk] = None
        self._opened = False
        self._exhausted = False
        self._consumed = False
        self._parts: List[str] = []
        self._finish_reason: Optional[str] = None
        self._usage: Optional[Dict[str, Any]] = None
        self.completion: asyncio.Future = asyncio.get_running_loop().create_future()
        self.completion.add_done_callback(_retrieve)

    async def open(self) -> None:
        """
        Start the model call and wait for its first chunk.

        Connection and authentication errors surface here, before any
        response has been sent.
        """
        if self._opened:
            return
        self._opened = True
        self._iterator = self._source.__aiter__()
        try:
            self._first = await self._iterator.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
        except Exception as e:
            self._reject(e)
            raise

    async def iter_text(self) -> AsyncIterator[str]:
        """Yield text deltas. Resolves ``completion`` when the stream ends."""
        if self._consumed:
            raise RuntimeError("ModelStream can only be consumed once")
        self._consumed = True
        await self.open()

        try:
            if self._first is not None:
                chunk, self._first = self._first, None
                text = self._accept(chunk)
                if text:
                    yield text

            if not self._exhausted:
                async for chunk in self._iterator:
                    text = self._accept(chunk)
                    if text:
                        yield text
        except Exception as e:
            self._reject(e)
            raise
        else:
            self._resolve()
        finally:
            if not self.completion.done():
                self._reject(StreamAbandoned("stream closed before completion"))
                await self._close_source()

    async def aclose(self) -> None:
        """
        Release the upstream call of a stream nobody is reading.

        A stream already being iterated is closed by its reader instead.
        """
        if self._consumed:
            return
        self._consumed = True
        self._reject(StreamAbandoned("stream released before it was read"))
        await self._close_source()

    @property
    def text(self) -> str:
        """Text received so far."""
        return "".join(self._parts)

    async def _close_source(self) -> None:
        closer = getattr(self._iterator, "aclose", None)
        if closer is None:
            return
        try:
            await closer()
        except Exception as e:
            logger.warning(f"Failed to close model stream: {type(e).__name__}: {e}")

    def _accept(self, chunk: StreamChunk) -> str:
        if chunk.text:
            self._parts.append(chunk.text)
        if chunk.finish_reason:
            self._finish_reason = chunk.finish_reason
        if chunk.usage:
            self._usage = dict(chunk.usage)
        return chunk.text

    def _resolve(self) -> None:
        if not self.completion.done():
            self.completion.set_result(CompletionEvent(
                text=self.text,
                finish_reason=self._finish_reason,
                usage=self._usage,
            ))

    def _reject(self, error: BaseException) -> None:
        if not self.completion.done():
            self.completion.set_exception(error)


class ChatModel(ABC):
    """Model service seam. Implementations must be safe to share across requests."""

    model_id: str

    @abstractmethod
    def stream(self, request: ModelRequest) -> ModelStream:
        """
        Configure a streamed completion.

        The call itself starts on ModelStream.open().
        """
        pass
