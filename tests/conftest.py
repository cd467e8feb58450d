import pytest

from agents.chat_agent import ChatAgent
from app.dependencies import build_runtime
from observability.collector import TraceCollector
from observability.scheduler import DeferredFlushScheduler
from observability.sink import InMemoryTraceSink
from orchestration.router import ChatRouter

from tests.fakes import ScriptedChatModel, make_settings


@pytest.fixture
def sink():
    return InMemoryTraceSink()


@pytest.fixture
def scheduler():
    return DeferredFlushScheduler(ceiling_seconds=2.0)


@pytest.fixture
def collector(sink, scheduler):
    return TraceCollector(sink=sink, scheduler=scheduler, trace_ttl_seconds=2.0, environment="test")


@pytest.fixture
def model():
    return ScriptedChatModel()


@pytest.fixture
def chat_router(model, collector):
    return ChatRouter(agent=ChatAgent(), model=model, collector=collector, environment="test")


@pytest.fixture
def runtime(model, sink):
    return build_runtime(make_settings(), model=model, sink=sink)


@pytest.fixture
def app(runtime):
    from app.main import app as fastapi_app

    fastapi_app.state.runtime = runtime
    yield fastapi_app
    del fastapi_app.state.runtime
