"""
Trace Sink Interface

Abstract destination for trace ingestion events.
Storage-agnostic - implementations can log, keep in memory, or ship to Langfuse.

DESIGN RULES:
- emit() is synchronous and cheap (buffer only)
- flush() does the I/O and returns when the buffer is delivered or dropped
- Never throw exceptions
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from observability.trace import new_id, utc_now


logger = logging.getLogger(__name__)


def ingestion_event(event_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap a record body in a Langfuse ingestion envelope."""
    return {
        "id": new_id(),
        "timestamp": utc_now().isoformat(),
        "type": event_type,
        "body": body,
    }


class TraceSink(ABC):
    """
    Abstract base for trace output destinations.

    Implementations:
    - LangfuseTraceSink (production)
    - ConsoleTraceSink (local debugging)
    - InMemoryTraceSink (tests)
    """

    @abstractmethod
    def emit(self, event: Dict[str, Any]) -> None:
        """
        Buffer one ingestion event.

        Must not throw and must not block.
        """
        pass

    @abstractmethod
    async def flush(self) -> None:
        """Deliver everything buffered so far. Must not throw."""
        pass

    async def shutdown(self) -> None:
        """Flush and release resources."""
        await self.flush()


class InMemoryTraceSink(TraceSink):
    """Keeps every event in memory. Used by tests and local runs."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []
        self.flushed: List[Dict[str, Any]] = []
        self.flush_count = 0
        self.closed = False

    def emit(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    async def flush(self) -> None:
        self.flush_count += 1
        self.flushed = list(self.events)

    async def shutdown(self) -> None:
        await self.flush()
        self.closed = True

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        """Bodies of all events with the given type, in emission order."""
        return [event["body"] for event in self.events if event["type"] == event_type]


class ConsoleTraceSink(TraceSink):
    """
    Logs every event instead of shipping it.

    Format: one line per event, body as JSON when verbose.
    """

    def __init__(self, verbose: bool = True):
        """
        Initialize console sink.

        Args:
            verbose: If True, log full bodies. If False, type and id only.
        """
        self._verbose = verbose
        self._pending = 0

    def emit(self, event: Dict[str, Any]) -> None:
        try:
            self._pending += 1
            body = event.get("body", {})
            if self._verbose:
                logger.info(f"[TRACE] {event['type']} {json.dumps(body, default=str)}")
            else:
                logger.info(f"[TRACE] {event['type']} id={body.get('id')}")
        except Exception as e:
            logger.warning(f"[TRACE] Failed to log event: {e}")

    async def flush(self) -> None:
        if self._pending:
            logger.debug(f"[TRACE] flushed {self._pending} events")
        self._pending = 0
