import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from agents.strategy import SamplingParameters
from llm.langchain_adapter import LangChainChatModel, to_langchain_messages, to_stream_chunk
from llm.streaming import ModelRequest
from schemas.message import ContentPart, Message, Role

from tests.fakes import make_settings


def test_messages_keep_order_behind_system_prompt():
    conversation = (
        Message(role=Role.USER, content=(ContentPart(type="text", text="Where is my order?"),)),
        Message(role=Role.ASSISTANT, content="Let me check."),
        Message(role=Role.SYSTEM, content="Context: The user has active orders #12345, #67890"),
    )

    messages = to_langchain_messages("You are an order assistant.", conversation)

    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, SystemMessage]
    assert messages[0].content == "You are an order assistant."
    assert messages[1].content == "Where is my order?"


def test_stream_chunk_carries_usage_and_finish_reason():
    chunk = AIMessageChunk(
        content="",
        usage_metadata={"input_tokens": 9, "output_tokens": 4, "total_tokens": 13},
        response_metadata={"finish_reason": "stop"},
    )

    mapped = to_stream_chunk(chunk)

    assert mapped.text == ""
    assert mapped.usage == {"input_tokens": 9, "output_tokens": 4, "total_tokens": 13}
    assert mapped.finish_reason == "stop"


def test_plain_text_chunk():
    mapped = to_stream_chunk(AIMessageChunk(content="Hel"))

    assert mapped.text == "Hel"
    assert mapped.usage is None
    assert mapped.finish_reason is None


@pytest.mark.asyncio
async def test_model_streams_through_langchain():
    llm = GenericFakeChatModel(messages=iter([AIMessage(content="Hello there friend")]))
    model = LangChainChatModel(llm, model_id="fake-model")
    request = ModelRequest(
        model="fake-model",
        messages=(Message(role=Role.USER, content="hi"),),
        system_prompt="You are a friendly assistant.",
        parameters=SamplingParameters(temperature=0.8),
    )

    stream = model.stream(request)
    await stream.open()
    text = "".join([delta async for delta in stream.iter_text()])

    assert text == "Hello there friend"
    assert (await stream.completion).text == "Hello there friend"


def test_openai_client_from_settings():
    model = LangChainChatModel.from_settings(make_settings(model_id="gpt-4.1-mini"))

    assert model.model_id == "gpt-4.1-mini"
    assert isinstance(model._llm, ChatOpenAI)


def test_azure_client_from_settings():
    settings = make_settings(
        model_provider="azure",
        azure_openai_api_key="azure-key",
        azure_openai_endpoint="https://example.openai.azure.com",
        azure_openai_deployment_name="gpt-4-deployment",
    )

    model = LangChainChatModel.from_settings(settings)

    assert isinstance(model._llm, AzureChatOpenAI)
