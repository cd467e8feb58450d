"""
Conversation Message Model

The internal shape of one chat turn, after the UI payload has been
normalized. Everything downstream of the API (agent pipeline, model
adapter, trace coordinator) speaks this type only.

DESIGN RULES:
- Immutable after creation
- Content is either plain text or an ordered list of typed parts
- Non-text parts are carried through but ignored for routing
"""

from enum import Enum
from typing import Any, Dict, List, Tuple, Union

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    """Author of a conversation turn."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ContentPart(BaseModel):
    """
    One typed part of a message body.

    Only ``type == "text"`` parts contribute to intent routing; other part
    types (files, reasoning, tool calls) are kept verbatim in ``extra``.
    """
    model_config = ConfigDict(frozen=True, extra="allow")

    type: str
    text: str = ""


MessageContent = Union[str, Tuple[ContentPart, ...]]


class Message(BaseModel):
    """A single conversation turn."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: MessageContent = ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for trace payloads."""
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [part.model_dump() for part in self.content]
        return {"role": self.role.value, "content": content}


# Ordered, immutable sequence of turns. The last entry drives routing.
Conversation = Tuple[Message, ...]


def system_message(text: str) -> Message:
    """Build a system-role message."""
    return Message(role=Role.SYSTEM, content=text)


def conversation_to_dicts(conversation: Conversation, limit: int = 0) -> List[Dict[str, Any]]:
    """
    Serialize a conversation for trace input.

    Args:
        conversation: Messages to serialize
        limit: Keep only the last ``limit`` messages (0 keeps all)
    """
    messages = conversation[-limit:] if limit > 0 else conversation
    return [message.to_dict() for message in messages]
