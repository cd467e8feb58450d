import asyncio

import pytest

from agents.chat_agent import AgentTimeoutError, ChatAgent
from agents.context import ContextEnrichment, ContextProvider
from agents.intent import Intent
from agents.strategy import DEFAULT_STRATEGY, STRATEGIES
from observability.coordinator import RequestTrace
from observability.sink import InMemoryTraceSink
from observability.trace import TraceRecord
from schemas.message import ContentPart, Message, Role


def user(content) -> Message:
    return Message(role=Role.USER, content=content)


class ExplodingProvider(ContextProvider):
    async def lookup(self, conversation, intent):
        raise ConnectionError("knowledge base unreachable")


class SlowProvider(ContextProvider):
    def __init__(self, delay: float):
        self.delay = delay
        self.calls = 0

    async def lookup(self, conversation, intent):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return ContextEnrichment.empty()


class FlakyProvider(ContextProvider):
    def __init__(self):
        self.calls = 0

    async def lookup(self, conversation, intent):
        self.calls += 1
        if self.calls == 1:
            raise ConnectionError("first attempt fails")
        return ContextEnrichment(text="Context: recovered", used=True)


@pytest.mark.asyncio
async def test_empty_conversation_returns_default():
    result = await ChatAgent().process(())

    assert result.system_prompt == DEFAULT_STRATEGY.system_prompt
    assert result.parameters == DEFAULT_STRATEGY.parameters
    assert result.enhanced_messages == ()
    assert result.metadata.context_used is False
    assert result.degraded is False


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", (ContentPart(type="file", url="x"),), ()])
async def test_last_message_without_text_returns_default(content):
    conversation = (user("where is my order"), user(content))

    result = await ChatAgent().process(conversation)

    assert result.system_prompt == DEFAULT_STRATEGY.system_prompt
    assert result.enhanced_messages is conversation
    assert result.metadata.context_used is False


@pytest.mark.asyncio
async def test_help_request_uses_help_strategy():
    conversation = (user("I need help with my order"),)

    result = await ChatAgent().process(conversation)

    assert result.intent is Intent.HELP_REQUEST
    assert result.system_prompt == STRATEGIES[Intent.HELP_REQUEST].system_prompt
    assert result.parameters.temperature == 0.3
    assert result.enhanced_messages == conversation
    assert result.metadata.context_used is False


@pytest.mark.asyncio
async def test_order_inquiry_appends_context_without_mutating_input():
    conversation = (user("Where is my order?"),)

    result = await ChatAgent().process(conversation)

    assert result.intent is Intent.ORDER_INQUIRY
    assert result.metadata.context_used is True
    assert len(conversation) == 1
    assert len(result.enhanced_messages) == 2
    assert result.enhanced_messages[:1] == conversation
    added = result.enhanced_messages[-1]
    assert added.role is Role.SYSTEM
    assert "#12345" in added.content


@pytest.mark.asyncio
async def test_routing_uses_last_message_only():
    conversation = (user("help!"), Message(role=Role.ASSISTANT, content="ok"), user("thanks"))

    result = await ChatAgent().process(conversation)

    assert result.intent is Intent.GENERAL_CHAT


@pytest.mark.asyncio
async def test_processing_time_is_stamped():
    result = await ChatAgent(context_provider=SlowProvider(0.02)).process((user("hi"),))

    assert result.metadata.processing_time_ms >= 10


@pytest.mark.asyncio
async def test_provider_fault_degrades_to_default():
    conversation = (user("Where is my order?"),)

    result = await ChatAgent(context_provider=ExplodingProvider()).process(conversation)

    assert result.degraded is True
    assert isinstance(result.fault, ConnectionError)
    assert result.system_prompt == DEFAULT_STRATEGY.system_prompt
    assert result.enhanced_messages is conversation
    assert result.metadata.context_used is False


@pytest.mark.asyncio
async def test_timeout_degrades_to_default():
    agent = ChatAgent(context_provider=SlowProvider(1.0), timeout_seconds=0.05)

    result = await agent.process((user("hello"),))

    assert result.degraded is True
    assert isinstance(result.fault, AgentTimeoutError)
    assert result.system_prompt == DEFAULT_STRATEGY.system_prompt


@pytest.mark.asyncio
async def test_bounded_retry_recovers():
    provider = FlakyProvider()
    agent = ChatAgent(context_provider=provider, max_attempts=2)

    result = await agent.process((user("Where is my order?"),))

    assert provider.calls == 2
    assert result.degraded is False
    assert result.metadata.context_used is True


@pytest.mark.asyncio
async def test_retry_never_exceeds_max_attempts():
    provider = SlowProvider(1.0)
    agent = ChatAgent(context_provider=provider, timeout_seconds=0.02, max_attempts=3)

    result = await agent.process((user("hello"),))

    assert provider.calls == 3
    assert result.degraded is True


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        ChatAgent(max_attempts=0)


@pytest.mark.asyncio
async def test_each_step_is_traced_without_message_bodies():
    sink = InMemoryTraceSink()
    trace = RequestTrace(TraceRecord(name="chat-request"), sink=sink)
    secret_text = "help " + "s" * 300

    await ChatAgent().process((user(secret_text),), tracer=trace)

    names = [span.name for span in trace.spans]
    assert names == ["chat-agent", "analyze-intent", "select-strategy", "retrieve-context"]
    root, analyze, strategy, context = trace.spans
    assert analyze.parent_id == root.id
    assert strategy.parent_id == root.id
    assert context.parent_id == root.id
    assert analyze.attributes["input.length"] == len(secret_text)
    assert len(analyze.attributes["input.preview"]) <= 53
    assert analyze.attributes["intent"] == "help_request"
    assert all(span.ended for span in trace.spans)
    for body in sink.of_type("span-update"):
        assert secret_text not in str(body)


@pytest.mark.asyncio
async def test_faulty_step_is_recorded_on_its_span():
    sink = InMemoryTraceSink()
    trace = RequestTrace(TraceRecord(name="chat-request"), sink=sink)

    result = await ChatAgent(context_provider=ExplodingProvider()).process(
        (user("Where is my order?"),), tracer=trace
    )

    assert result.degraded is True
    context_span = next(span for span in trace.spans if span.name == "retrieve-context")
    assert context_span.level.value == "ERROR"
    assert "ConnectionError" in context_span.status_message
