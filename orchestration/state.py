from dataclasses import dataclass
from typing import Optional, Union

from agents.intent import Intent
from llm.streaming import ModelStream


@dataclass(frozen=True)
class ChatStream:
    """
    A request that reached the model. The response streams from ``stream``;
    its trace is settled in the background.
    """
    stream: ModelStream
    trace_id: str
    intent: Intent


@dataclass(frozen=True)
class ChatFailure:
    """A request that ended before streaming. ``message`` is client-safe."""
    status_code: int
    message: str
    trace_id: Optional[str] = None


ChatReply = Union[ChatStream, ChatFailure]
