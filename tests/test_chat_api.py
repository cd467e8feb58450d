"""
End-to-end tests over HTTP.

The app is driven through httpx.ASGITransport with a scripted model and an
in-memory trace sink, so no network is touched.
"""

import json

import httpx
import pytest

from tests.fakes import ScriptedChatModel


def sse_parts(text: str):
    """Decode an SSE body into its data payloads."""
    payloads = []
    for frame in text.split("\n\n"):
        if not frame.startswith("data: "):
            continue
        data = frame[len("data: "):]
        payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads


def client_for(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def post_chat(app, payload):
    async with client_for(app) as client:
        return await client.post("/api/chat", json=payload)


@pytest.mark.asyncio
async def test_help_request_streams_and_is_traced(app, runtime, sink, model):
    payload = {"messages": [{"role": "user", "parts": [{"type": "text", "text": "I need help with my order"}]}]}

    response = await post_chat(app, payload)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-vercel-ai-ui-message-stream"] == "v1"
    trace_id = response.headers["x-trace-id"]

    parts = sse_parts(response.text)
    assert [p if p == "[DONE]" else p["type"] for p in parts] == [
        "start", "start-step", "text-start",
        "text-delta", "text-delta", "text-delta",
        "text-end", "finish-step", "finish", "[DONE]",
    ]
    assert "".join(p["delta"] for p in parts if p != "[DONE]" and p["type"] == "text-delta") == "Sure, I can help."
    assert model.requests[0].system_prompt.startswith("You are a technical support assistant")

    assert await runtime.collector.wait_idle(1.0) is True
    assert await runtime.scheduler.drain(1.0) is True

    root = sink.of_type("trace-create")[-1]
    assert root["id"] == trace_id
    assert root["metadata"]["status"] == "success"
    assert root["metadata"]["intent"] == "help_request"
    assert root["output"]
    assert sink.flush_count >= 1


@pytest.mark.asyncio
async def test_plain_content_messages_are_accepted(app, runtime, model):
    payload = {"messages": [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "Hi! How can I help?"},
        {"role": "user", "content": "Where is my order?"},
    ]}

    response = await post_chat(app, payload)
    await runtime.collector.wait_idle(1.0)

    assert response.status_code == 200
    request = model.requests[0]
    assert request.system_prompt.startswith("You are an order assistant")
    assert request.messages[-1].role.value == "system"
    assert "#12345" in request.messages[-1].content


@pytest.mark.asyncio
async def test_empty_messages_rejected(app, runtime, sink, model):
    response = await post_chat(app, {"messages": []})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request: messages must be a non-empty array"}
    assert model.requests == []
    assert sink.of_type("generation-create") == []
    await runtime.scheduler.drain(1.0)
    assert sink.of_type("trace-create")[-1]["metadata"]["status"] == "error"


@pytest.mark.asyncio
async def test_invalid_json_rejected(app):
    async with client_for(app) as client:
        response = await client.post(
            "/api/chat",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_model_failure_returns_generic_500(app, runtime):
    runtime.router._model = ScriptedChatModel(fail_on_open=PermissionError("bad key sk-live-123"))

    response = await post_chat(app, {"messages": [{"role": "user", "content": "hello"}]})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert "sk-live-123" not in response.text


@pytest.mark.asyncio
async def test_mid_stream_failure_sends_error_part(app, runtime, sink):
    runtime.router._model = ScriptedChatModel(fail_after=1)

    response = await post_chat(app, {"messages": [{"role": "user", "content": "hello"}]})
    await runtime.collector.wait_idle(1.0)

    assert response.status_code == 200
    parts = sse_parts(response.text)
    assert parts[-1] == "[DONE]"
    assert parts[-2] == {"type": "error", "errorText": "An error occurred while generating the response."}
    assert "upstream connection reset" not in response.text
    assert sink.of_type("trace-create")[-1]["metadata"]["status"] == "error"


@pytest.mark.asyncio
async def test_health(app):
    async with client_for(app) as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_test_trace_endpoint(app, runtime, sink):
    async with client_for(app) as client:
        response = await client.get("/api/test-trace")
    await runtime.scheduler.drain(1.0)

    assert response.status_code == 200
    payload = response.json()
    assert payload["sampled"] is True
    assert sink.of_type("span-create")[0]["traceId"] == payload["traceId"]
    assert sink.flush_count == 1
