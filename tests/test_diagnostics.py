import pytest

from observability.collector import TraceCollector
from orchestration.diagnostics import TEST_SPAN_NAME, TEST_TRACE_NAME, emit_test_trace


@pytest.mark.asyncio
async def test_test_trace_emits_one_span_and_flushes(collector, sink):
    payload = await emit_test_trace(collector, work_seconds=0)
    await collector.scheduler.drain(1.0)

    assert payload["sampled"] is True
    root = sink.of_type("trace-create")[-1]
    assert root["id"] == payload["traceId"]
    assert root["name"] == TEST_TRACE_NAME
    assert root["metadata"]["status"] == "success"
    spans = sink.of_type("span-create")
    assert [span["name"] for span in spans] == [TEST_SPAN_NAME]
    update = sink.of_type("span-update")[0]
    assert update["level"] == "DEFAULT"
    assert update["metadata"]["test.type"] == "simple"
    assert "test.timestamp" in update["metadata"]
    assert sink.of_type("generation-create") == []
    assert sink.flush_count == 1


@pytest.mark.asyncio
async def test_test_trace_with_tracing_disabled(sink, scheduler):
    collector = TraceCollector(sink=sink, scheduler=scheduler, enabled=False)

    payload = await emit_test_trace(collector, work_seconds=0)

    assert payload["sampled"] is False
    assert sink.events == []
    assert scheduler.scheduled_total == 0
