"""
Context Enricher

Supplies an optional supplementary system message for a resolved intent.

The static provider is a stand-in for a real knowledge lookup (order
database, docs search). Whatever backs it, the contract stays the same:
given the conversation and the intent, return text plus a ``used`` flag.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

from agents.intent import Intent
from schemas.message import Conversation


@dataclass(frozen=True)
class ContextEnrichment:
    """Result of a context lookup."""
    text: str = ""
    used: bool = False

    @classmethod
    def empty(cls) -> "ContextEnrichment":
        return cls(text="", used=False)


class ContextProvider(ABC):
    """Source of supplementary context for the agent pipeline."""

    @abstractmethod
    async def lookup(self, conversation: Conversation, intent: Intent) -> ContextEnrichment:
        """
        Find context relevant to the conversation.

        Must not mutate the conversation.
        """
        pass


DEFAULT_CONTEXTS: Mapping[Intent, str] = {
    Intent.ORDER_INQUIRY: "Context: The user has active orders #12345, #67890",
}


class StaticContextProvider(ContextProvider):
    """Returns fixed context text per intent."""

    def __init__(self, contexts: Optional[Mapping[Intent, str]] = None):
        self._contexts = dict(DEFAULT_CONTEXTS if contexts is None else contexts)

    async def lookup(self, conversation: Conversation, intent: Intent) -> ContextEnrichment:
        text = self._contexts.get(intent, "")
        if not text:
            return ContextEnrichment.empty()
        return ContextEnrichment(text=text, used=True)
