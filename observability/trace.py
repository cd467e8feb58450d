"""
Trace Records

Data structures for one request's observability timeline:
a root TraceRecord owning SpanRecords and GenerationRecords.

DESIGN RULES:
- Pure data containers, no I/O
- Attributes are append-only: keys are added, never replaced or removed
- A sealed record accepts no further attributes
- Serialization produces Langfuse ingestion bodies
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


logger = logging.getLogger(__name__)

Scalar = (str, int, float, bool)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class TraceState(str, Enum):
    """Lifecycle of one request trace."""
    OPENED = "opened"
    GENERATION_STARTED = "generation_started"
    GENERATION_FINALIZED = "generation_finalized"
    FLUSHED = "flushed"
    FAILED = "failed"
    ABANDONED = "abandoned"


TERMINAL_STATES = frozenset({
    TraceState.GENERATION_FINALIZED,
    TraceState.FLUSHED,
    TraceState.FAILED,
    TraceState.ABANDONED,
})


class Level(str, Enum):
    """Observation severity, as understood by Langfuse."""
    DEBUG = "DEBUG"
    DEFAULT = "DEFAULT"
    WARNING = "WARNING"
    ERROR = "ERROR"


def _count(value: Any) -> int:
    """Coerce a token count to a non-negative int. Missing or invalid -> 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


@dataclass(frozen=True)
class Usage:
    """Token usage of one generation. Never negative, never missing."""
    input: int = 0
    output: int = 0
    total: int = 0

    @classmethod
    def normalize(cls, raw: Optional[Mapping[str, Any]]) -> "Usage":
        """
        Build Usage from whatever the model SDK reported.

        Accepts snake_case (``input_tokens``), camelCase (``inputTokens``)
        and short (``input``) keys. Absent values become 0.
        """
        if not raw:
            return cls()

        def pick(*keys: str) -> int:
            for key in keys:
                if raw.get(key) is not None:
                    return _count(raw.get(key))
            return 0

        return cls(
            input=pick("input_tokens", "inputTokens", "input", "prompt_tokens", "promptTokens"),
            output=pick("output_tokens", "outputTokens", "output", "completion_tokens", "completionTokens"),
            total=pick("total_tokens", "totalTokens", "total"),
        )

    def to_dict(self) -> Dict[str, int]:
        return {"input": self.input, "output": self.output, "total": self.total}


class AttributeBag:
    """Append-only mapping of string keys to scalar values."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = {}
        self._sealed = False
        if initial:
            self.update(initial)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self._sealed = True

    def update(self, attributes: Mapping[str, Any]) -> None:
        if self._sealed:
            logger.debug(f"Ignoring attributes on sealed record: {sorted(attributes)}")
            return
        for key, value in attributes.items():
            if key in self._data:
                continue
            if value is None:
                continue
            if not isinstance(value, Scalar):
                value = str(value)
            self._data[str(key)] = value

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _drop_none(body: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in body.items() if value is not None}


@dataclass
class TraceRecord:
    """Root record of one request."""
    name: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)
    input: Any = None
    output: Any = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    environment: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    attributes: AttributeBag = field(default_factory=AttributeBag)

    def to_body(self) -> Dict[str, Any]:
        """Body of a ``trace-create`` event. Re-sending upserts the trace."""
        return _drop_none({
            "id": self.id,
            "name": self.name,
            "timestamp": _iso(self.timestamp),
            "input": self.input,
            "output": self.output,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "environment": self.environment,
            "tags": list(self.tags),
            "metadata": self.attributes.to_dict(),
        })


@dataclass
class SpanRecord:
    """A bounded sub-operation within a trace."""
    trace_id: str
    name: str
    id: str = field(default_factory=new_id)
    parent_id: Optional[str] = None
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    input: Any = None
    output: Any = None
    level: Level = Level.DEFAULT
    status_message: Optional[str] = None
    attributes: AttributeBag = field(default_factory=AttributeBag)

    @property
    def ended(self) -> bool:
        return self.end_time is not None

    def end(self, level: Optional[Level] = None, status_message: Optional[str] = None) -> bool:
        """Close the record. Returns False if it was already closed."""
        if self.ended:
            return False
        self.end_time = utc_now()
        if level is not None:
            self.level = level
        if status_message is not None:
            self.status_message = status_message
        self.attributes.seal()
        return True

    def create_body(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "traceId": self.trace_id,
            "parentObservationId": self.parent_id,
            "name": self.name,
            "startTime": _iso(self.start_time),
            "input": self.input,
            "metadata": self.attributes.to_dict(),
        })

    def update_body(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "traceId": self.trace_id,
            "endTime": _iso(self.end_time),
            "output": self.output,
            "level": self.level.value,
            "statusMessage": self.status_message,
            "metadata": self.attributes.to_dict(),
        })


@dataclass
class GenerationRecord(SpanRecord):
    """A span specialized for one model invocation."""
    model: Optional[str] = None
    model_parameters: Dict[str, Any] = field(default_factory=dict)
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None

    def create_body(self) -> Dict[str, Any]:
        body = super().create_body()
        body.update(_drop_none({
            "model": self.model,
            "modelParameters": self.model_parameters or None,
        }))
        return body

    def update_body(self) -> Dict[str, Any]:
        body = super().update_body()
        if self.usage is not None:
            body["usage"] = dict(self.usage.to_dict(), unit="TOKENS")
        return body
