"""
Trace Collector

Process-wide entry point for request traces.
Built once at startup, injected into the request router, shut down with
the application.

DESIGN RULES:
- Never throw exceptions into the request path
- Configurable enable/disable and sampling
- Tracks completion watchers so shutdown can close them
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Set

from observability.coordinator import RequestTrace
from observability.scheduler import DeferredFlushScheduler
from observability.sink import ConsoleTraceSink, TraceSink
from observability.trace import AttributeBag, TraceRecord, TraceState


logger = logging.getLogger(__name__)


class TraceCollector:
    """
    Creates RequestTraces and follows them to completion.

    Responsibilities:
    - Open a trace per request (sampling decided here)
    - Watch each trace's completion channel in the background
    - Hand finished traces to the flush scheduler
    - Close outstanding traces on shutdown
    """

    def __init__(
        self,
        sink: Optional[TraceSink] = None,
        scheduler: Optional[DeferredFlushScheduler] = None,
        enabled: bool = True,
        sample_rate: Optional[float] = None,
        trace_ttl_seconds: float = 30.0,
        environment: Optional[str] = None,
        random_source: Callable[[], float] = random.random,
    ):
        """
        Initialize trace collector.

        Args:
            sink: Destination for ingestion events. Defaults to ConsoleTraceSink.
            scheduler: Deferred flush scheduler. Defaults to a new one.
            enabled: Whether tracing is enabled. Can be toggled at runtime.
            sample_rate: Fraction of requests traced (None means all)
            trace_ttl_seconds: How long a trace waits for its completion event
            environment: Environment label attached to every trace
            random_source: Source of [0, 1) values for sampling
        """
        if sample_rate is not None and not 0.0 <= sample_rate <= 1.0:
            raise ValueError(f"sample_rate must be within [0, 1], got {sample_rate}")
        self._sink = sink or ConsoleTraceSink()
        self._scheduler = scheduler or DeferredFlushScheduler()
        self._enabled = enabled
        self._sample_rate = sample_rate
        self._trace_ttl_seconds = trace_ttl_seconds
        self._environment = environment
        self._random = random_source
        self._watchers: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        """Check if tracing is enabled."""
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        """Enable or disable tracing at runtime."""
        self._enabled = value

    @property
    def sink(self) -> TraceSink:
        return self._sink

    @property
    def scheduler(self) -> DeferredFlushScheduler:
        return self._scheduler

    @property
    def watching(self) -> int:
        """Traces still waiting for their completion event."""
        return len(self._watchers)

    def start_trace(
        self,
        name: str,
        input: Any = None,
        metadata: Optional[Mapping[str, Any]] = None,
        tags: Optional[Iterable[str]] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> RequestTrace:
        """Open the root trace for one request."""
        record = TraceRecord(
            name=name,
            input=input,
            user_id=user_id,
            session_id=session_id,
            environment=self._environment,
            tags=list(tags or []),
            attributes=AttributeBag(metadata),
        )
        return RequestTrace(
            record,
            sink=self._sink,
            sampled=self._should_sample(),
            ttl_seconds=self._trace_ttl_seconds,
        )

    def follow(
        self,
        trace: RequestTrace,
        completion: asyncio.Future,
        release: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> asyncio.Task:
        """
        Settle the trace in the background once ``completion`` resolves.

        Args:
            trace: Trace in ``generation_started``
            completion: Future resolved by the model stream
            release: Called when the trace is abandoned, to free the model call
        """
        task = asyncio.get_running_loop().create_task(
            self._watch(trace, completion, release)
        )
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return task

    def flush(self, trace: RequestTrace) -> bool:
        """Hand a settled trace's export to the scheduler."""
        return trace.request_flush(self._scheduler)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until every followed trace has settled."""
        if not self._watchers:
            return True
        done, pending = await asyncio.wait(list(self._watchers), timeout=timeout)
        return not pending

    async def shutdown(self) -> None:
        """Close every trace still waiting for completion."""
        watchers = list(self._watchers)
        if watchers:
            logger.info(f"[TRACE] Closing {len(watchers)} open traces")
        for task in watchers:
            task.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)

    async def _watch(
        self,
        trace: RequestTrace,
        completion: asyncio.Future,
        release: Optional[Callable[[], Awaitable[None]]],
    ) -> None:
        try:
            await trace.settle(completion, self._scheduler)
        finally:
            if release is not None and trace.state is TraceState.ABANDONED:
                try:
                    await release()
                except Exception as e:
                    logger.warning(f"[{trace.id}] Failed to release model call: {e}")

    def _should_sample(self) -> bool:
        if not self._enabled:
            return False
        if self._sample_rate is None:
            return True
        return self._random() < self._sample_rate
