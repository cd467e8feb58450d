"""
Intent Classifier

Maps the text of the latest user turn to one Intent category.

DESIGN RULES:
- Pure function, no I/O, no side effects
- Deterministic: ordered trigger table, first match wins
- Never raises; unknown input resolves to the default intent
"""

from enum import Enum
from typing import Any, Tuple

from schemas.message import ContentPart, Message


class Intent(str, Enum):
    """Closed set of request categories used to pick a response strategy."""
    HELP_REQUEST = "help_request"
    ORDER_INQUIRY = "order_inquiry"
    GENERAL_CHAT = "general_chat"


DEFAULT_INTENT = Intent.GENERAL_CHAT

# Checked in order, case-sensitive. "help with my order" is a help request.
INTENT_TRIGGERS: Tuple[Tuple[Intent, Tuple[str, ...]], ...] = (
    (Intent.HELP_REQUEST, ("help", "помощь")),
    (Intent.ORDER_INQUIRY, ("order", "заказ")),
)

PREVIEW_LENGTH = 50


def extract_text(content: Any) -> str:
    """
    Extract routable text from message content.

    Plain strings are returned unchanged. A sequence of parts is reduced to
    its text parts joined by a single space. Anything else is empty.
    """
    if isinstance(content, str):
        return content

    if isinstance(content, (list, tuple)):
        texts = []
        for part in content:
            if isinstance(part, ContentPart):
                part_type, text = part.type, part.text
            elif isinstance(part, dict):
                part_type, text = part.get("type"), part.get("text")
            else:
                continue
            if part_type == "text" and text:
                texts.append(text)
        return " ".join(texts)

    return ""


def last_message_text(message: Message) -> str:
    """Text of a single message, used as routing input."""
    return extract_text(message.content)


def classify_intent(text: str) -> Intent:
    """
    Classify text into an Intent.

    Args:
        text: Text of the latest user turn

    Returns:
        The first Intent whose trigger appears in the text,
        or DEFAULT_INTENT when none match.
    """
    if not text:
        return DEFAULT_INTENT

    for intent, triggers in INTENT_TRIGGERS:
        if any(trigger in text for trigger in triggers):
            return intent
    return DEFAULT_INTENT


def preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
    """Length-capped preview of user text for span attributes."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
