"""
Trace Lifecycle Coordinator

Owns the trace of one request from the moment it arrives until its
export has been handed off.

STATES:
    opened → generation_started → generation_finalized → flushed
    opened | generation_started → failed
    opened | generation_started → abandoned

DESIGN RULES:
- One RequestTrace per request, never shared
- generation_started happens-before generation_finalized
- finalize_generation() is idempotent: later calls are no-ops
- Finalization only comes from the completion channel, never from the handler
- A trace waiting for completion self-closes after its TTL
- Telemetry failures are logged, never raised
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from llm.streaming import CompletionEvent, StreamAbandoned
from observability.scheduler import DeferredFlushScheduler
from observability.sink import TraceSink, ingestion_event
from observability.trace import (
    TERMINAL_STATES,
    AttributeBag,
    GenerationRecord,
    Level,
    SpanRecord,
    TraceRecord,
    TraceState,
    Usage,
)
from schemas.message import conversation_to_dicts
from schemas.result import AgentResult


logger = logging.getLogger(__name__)


CLIENT_ABANDONED = "client-abandoned"
SHUTDOWN = "shutdown"
DEFAULT_FINISH_REASON = "stop"
ERROR_MESSAGE_LIMIT = 500


class SpanHandle:
    """What a traced step sees of its span."""

    def __init__(self, record: Optional[SpanRecord] = None):
        self._record = record

    @property
    def id(self) -> Optional[str]:
        return self._record.id if self._record else None

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        if self._record is not None:
            self._record.attributes.update(attributes)


class StepTracer(ABC):
    """Opens spans around pipeline steps."""

    @abstractmethod
    def span(
        self,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        parent: Optional[SpanHandle] = None,
    ):
        """Context manager yielding a SpanHandle."""
        pass


class NullTracer(StepTracer):
    """Tracer that records nothing."""

    @contextmanager
    def span(self, name, attributes=None, parent=None) -> Iterator[SpanHandle]:
        yield SpanHandle()


NULL_TRACER = NullTracer()


class RequestTrace(StepTracer):
    """
    Trace of a single request.

    Created by TraceCollector.start_trace(). The request handler drives it
    up to generation_started; settle() takes it the rest of the way once
    the model's completion event arrives.
    """

    def __init__(
        self,
        record: TraceRecord,
        sink: TraceSink,
        sampled: bool = True,
        ttl_seconds: float = 30.0,
    ):
        """
        Args:
            record: Root record, already carrying request-level attributes
            sink: Destination for ingestion events
            sampled: When False the state machine runs but nothing is emitted
            ttl_seconds: How long settle() waits for the completion event
        """
        self._record = record
        self._sink = sink
        self._sampled = sampled
        self._ttl_seconds = ttl_seconds
        self._state = TraceState.OPENED
        self._generation: Optional[GenerationRecord] = None
        self._spans: List[SpanRecord] = []
        self._flushed = False

        self._emit("trace-create", record.to_body())

    # ============================================================
    # INSPECTION
    # ============================================================

    @property
    def id(self) -> str:
        return self._record.id

    @property
    def state(self) -> TraceState:
        return self._state

    @property
    def record(self) -> TraceRecord:
        return self._record

    @property
    def generation(self) -> Optional[GenerationRecord]:
        return self._generation

    @property
    def spans(self) -> List[SpanRecord]:
        return list(self._spans)

    @property
    def sampled(self) -> bool:
        return self._sampled

    @property
    def flushed(self) -> bool:
        return self._flushed

    @property
    def status(self) -> Optional[str]:
        return self._record.attributes.get("status")

    @property
    def settled(self) -> bool:
        return self._state in TERMINAL_STATES

    # ============================================================
    # REQUEST PHASE
    # ============================================================

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        """Add request-level attributes. Ignored once the trace has settled."""
        if self.settled:
            logger.debug(f"[{self.id}] Trace settled; attributes ignored")
            return
        self._record.attributes.update(attributes)

    def update_input(self, value: Any) -> None:
        """Set the trace input once the request body has been parsed."""
        if self.settled:
            return
        self._record.input = value
        self._emit("trace-create", self._record.to_body())

    @contextmanager
    def span(
        self,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        parent: Optional[SpanHandle] = None,
    ) -> Iterator[SpanHandle]:
        """
        Record a pipeline step as a child span.

        Exceptions raised inside are recorded on the span and re-raised.
        """
        record = SpanRecord(
            trace_id=self.id,
            name=name,
            parent_id=parent.id if parent else None,
            attributes=AttributeBag(attributes),
        )
        self._spans.append(record)
        self._emit("span-create", record.create_body())

        try:
            yield SpanHandle(record)
        except BaseException as e:
            if isinstance(e, Exception):
                record.end(Level.ERROR, _describe(e))
            else:
                record.end(Level.WARNING, "cancelled")
            self._emit("span-update", record.update_body())
            raise
        else:
            record.end()
            self._emit("span-update", record.update_body())

    def start_generation(
        self,
        model: str,
        agent_result: AgentResult,
        name: str = "chat-completion",
    ) -> Optional[GenerationRecord]:
        """
        Open the generation for the model call. Must precede the call.

        Returns:
            The generation record, or None if the trace is not in ``opened``.
        """
        if self._state is not TraceState.OPENED:
            logger.error(f"[{self.id}] start_generation in state {self._state.value}; ignored")
            return None

        messages = [{"role": "system", "content": agent_result.system_prompt}]
        messages.extend(conversation_to_dicts(agent_result.enhanced_messages))

        generation = GenerationRecord(
            trace_id=self.id,
            name=name,
            model=model,
            model_parameters=agent_result.parameters.to_dict(),
            input=messages,
            attributes=AttributeBag({
                "intent": agent_result.intent.value,
                "context_used": agent_result.metadata.context_used,
                "degraded": agent_result.degraded,
            }),
        )
        self._generation = generation
        self._state = TraceState.GENERATION_STARTED
        self._record.attributes.update({"intent": agent_result.intent.value})

        self._emit("generation-create", generation.create_body())
        logger.debug(f"[{self.id}] Generation started: model={model}")
        return generation

    # ============================================================
    # COMPLETION PHASE
    # ============================================================

    def finalize_generation(self, event: CompletionEvent) -> bool:
        """
        Record the model's output and mark the trace successful.

        Returns:
            True if this call finalized the generation, False if it was
            a duplicate or arrived without a started generation.
        """
        if self._state is TraceState.OPENED:
            logger.error(f"[{self.id}] finalize_generation without a started generation; dropped")
            return False
        if self._state is not TraceState.GENERATION_STARTED:
            logger.debug(f"[{self.id}] finalize_generation in state {self._state.value}; ignored")
            return False

        generation = self._generation
        usage = Usage.normalize(event.usage)
        finish_reason = event.finish_reason or DEFAULT_FINISH_REASON

        generation.output = event.text
        generation.usage = usage
        generation.finish_reason = finish_reason
        generation.attributes.update({"finish_reason": finish_reason})
        generation.end()

        self._record.output = event.text
        self._record.attributes.update({
            "status": "success",
            "finish_reason": finish_reason,
            "usage.total_tokens": usage.total,
        })
        self._seal(TraceState.GENERATION_FINALIZED)

        self._emit("generation-update", generation.update_body())
        self._emit("trace-create", self._record.to_body())
        logger.info(
            f"[{self.id}] Generation finalized: finish_reason={finish_reason} "
            f"tokens={usage.total}"
        )
        return True

    def fail(self, error: BaseException, stage: str) -> bool:
        """
        Close the trace with an error status.

        The exception is recorded on the root trace and, when a generation
        is open, on the generation instead of an output.
        """
        if self._state not in (TraceState.OPENED, TraceState.GENERATION_STARTED):
            logger.debug(f"[{self.id}] fail in state {self._state.value}; ignored")
            return False

        message = _describe(error)
        if self._generation is not None and self._generation.end(Level.ERROR, message):
            self._emit("generation-update", self._generation.update_body())

        self._record.attributes.update({
            "status": "error",
            "error.stage": stage,
            "error.type": type(error).__name__,
            "error.message": str(error)[:ERROR_MESSAGE_LIMIT],
        })
        self._seal(TraceState.FAILED)
        self._emit("trace-create", self._record.to_body())
        logger.warning(f"[{self.id}] Trace failed at {stage}: {type(error).__name__}")
        return True

    def abandon(self, reason: str = CLIENT_ABANDONED) -> bool:
        """Close a trace whose completion will never arrive."""
        if self._state not in (TraceState.OPENED, TraceState.GENERATION_STARTED):
            return False

        if self._generation is not None and self._generation.end(Level.WARNING, reason):
            self._emit("generation-update", self._generation.update_body())

        self._record.attributes.update({"status": reason})
        self._seal(TraceState.ABANDONED)
        self._emit("trace-create", self._record.to_body())
        logger.warning(f"[{self.id}] Trace abandoned: {reason}")
        return True

    def request_flush(self, scheduler: DeferredFlushScheduler) -> bool:
        """
        Hand the export of this trace to the scheduler. At most once.

        Returns:
            True if the flush was handed off by this call.
        """
        if self._flushed:
            return False
        if not self.settled:
            logger.error(f"[{self.id}] flush requested in state {self._state.value}; ignored")
            return False

        self._flushed = True
        if self._sampled:
            scheduler.schedule(self._sink.flush(), label=f"flush:{self.id}")
        if self._state is TraceState.GENERATION_FINALIZED:
            self._state = TraceState.FLUSHED
        return True

    async def settle(
        self,
        completion: "asyncio.Future[CompletionEvent]",
        scheduler: DeferredFlushScheduler,
        ttl_seconds: Optional[float] = None,
    ) -> TraceState:
        """
        Wait for the model's completion event and close the trace.

        - CompletionEvent → finalize_generation
        - StreamAbandoned or no event within the TTL → abandon
        - any other error → fail
        Then the flush is handed to the scheduler.
        """
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        try:
            event = await asyncio.wait_for(asyncio.shield(completion), timeout=ttl)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.id}] No completion after {ttl}s")
            self.abandon(CLIENT_ABANDONED)
        except StreamAbandoned:
            self.abandon(CLIENT_ABANDONED)
        except asyncio.CancelledError:
            if not completion.cancelled():
                self.abandon(SHUTDOWN)
                self.request_flush(scheduler)
                raise
            self.abandon(CLIENT_ABANDONED)
        except Exception as e:
            self.fail(e, stage="generation")
        else:
            self.finalize_generation(event)

        self.request_flush(scheduler)
        return self._state

    # ============================================================
    # INTERNALS
    # ============================================================

    def _seal(self, state: TraceState) -> None:
        self._state = state
        self._record.attributes.seal()

    def _emit(self, event_type: str, body: Dict[str, Any]) -> None:
        if not self._sampled:
            return
        try:
            self._sink.emit(ingestion_event(event_type, body))
        except Exception as e:
            logger.warning(f"[{self.id}] Failed to emit {event_type}: {e}")


def _describe(error: BaseException) -> str:
    text = str(error)
    if not text:
        return type(error).__name__
    return f"{type(error).__name__}: {text[:ERROR_MESSAGE_LIMIT]}"
