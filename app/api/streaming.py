"""
UI Message Stream

Encodes a ModelStream as server-sent events in the format the chat UI
renders incrementally:

    start → start-step → text-start → text-delta* → text-end
          → finish-step → finish → [DONE]

A model failure mid-stream becomes a single ``error`` part with a
generic message.
"""

import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict

from llm.streaming import ModelStream


logger = logging.getLogger(__name__)


UI_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "x-vercel-ai-ui-message-stream": "v1",
}

STREAM_ERROR_TEXT = "An error occurred while generating the response."
DONE = "data: [DONE]\n\n"


def encode_part(part: Dict[str, Any]) -> str:
    payload = json.dumps(part, ensure_ascii=False)
    return f"data: {payload}\n\n"


async def ui_message_stream(stream: ModelStream, message_id: str) -> AsyncIterator[str]:
    """Yield SSE frames for one assistant message."""
    text_id = f"{message_id}-text"

    yield encode_part({"type": "start", "messageId": message_id})
    yield encode_part({"type": "start-step"})
    yield encode_part({"type": "text-start", "id": text_id})

    try:
        async with aclosing(stream.iter_text()) as deltas:
            async for delta in deltas:
                yield encode_part({"type": "text-delta", "id": text_id, "delta": delta})
    except Exception as e:
        logger.error(f"[{message_id}] Model stream failed: {type(e).__name__}")
        yield encode_part({"type": "error", "errorText": STREAM_ERROR_TEXT})
        yield DONE
        return

    yield encode_part({"type": "text-end", "id": text_id})
    yield encode_part({"type": "finish-step"})
    yield encode_part({"type": "finish"})
    yield DONE
