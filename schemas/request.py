from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from schemas.message import ContentPart, Conversation, Message, Role


class UIMessagePart(BaseModel):
    """A typed part as sent by the chat UI."""
    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None


class UIMessage(BaseModel):
    """
    One message as sent by the chat UI.

    The UI sends ``parts``; plain API clients may send ``content`` as a
    string or as a list of parts. Both are accepted.
    """
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    role: Literal["user", "assistant", "system"]
    parts: Optional[List[UIMessagePart]] = None
    content: Optional[Union[str, List[UIMessagePart]]] = None

    def to_message(self) -> Message:
        """Convert to the internal Message model."""
        raw_parts = self.parts
        if raw_parts is None and isinstance(self.content, list):
            raw_parts = self.content

        if raw_parts is not None:
            parts = tuple(
                ContentPart(**_part_fields(part))
                for part in raw_parts
            )
            return Message(role=Role(self.role), content=parts)

        return Message(role=Role(self.role), content=self.content or "")


def _part_fields(part: UIMessagePart) -> dict:
    fields: dict[str, Any] = part.model_dump(exclude_none=True)
    fields.setdefault("text", "")
    return fields


class ChatRequest(BaseModel):
    """
    API request model for the /api/chat endpoint.

    This is the external contract: the chat UI sends this.
    """
    messages: List[UIMessage] = Field(..., description="Conversation so far, oldest first")

    def to_conversation(self) -> Conversation:
        """Convert to the internal immutable Conversation."""
        return tuple(message.to_message() for message in self.messages)
