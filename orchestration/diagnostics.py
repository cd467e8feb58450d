"""
Trace Diagnostics

Emits one self-contained trace with a single span, so an operator can
check that the telemetry backend receives data without calling the model.
"""

import asyncio
import logging
from typing import Any, Dict

from observability.collector import TraceCollector
from observability.trace import utc_now


logger = logging.getLogger(__name__)


TEST_TRACE_NAME = "test-trace"
TEST_SPAN_NAME = "test.simple-span"


def _epoch_ms() -> int:
    return int(utc_now().timestamp() * 1000)


async def emit_test_trace(collector: TraceCollector, work_seconds: float = 0.1) -> Dict[str, Any]:
    """
    Record a diagnostic trace and hand its export to the scheduler.

    Returns:
        Client payload with the trace id and whether it was sampled.
    """
    trace = collector.start_trace(TEST_TRACE_NAME, tags=["diagnostic"])
    logger.info(f"[{trace.id}] Creating test span")

    with trace.span(TEST_SPAN_NAME, {"test.type": "simple"}) as span:
        # simulated work
        await asyncio.sleep(work_seconds)
        span.set_attributes({
            "test.timestamp": _epoch_ms(),
            "test.message": "Hello from the trace pipeline!",
        })

    trace.set_attributes({"status": "success"})
    trace.update_input({"test.type": "simple"})

    if trace.sampled:
        collector.scheduler.schedule(collector.sink.flush(), label=f"flush:{trace.id}")
    logger.info(f"[{trace.id}] Test span completed")

    return {
        "message": "Test span created and queued for export",
        "traceId": trace.id,
        "sampled": trace.sampled,
        "timestamp": _epoch_ms(),
    }
