"""
FastAPI Dependencies

All object creation happens here, not per request.
Process-wide collaborators (model client, telemetry sink, flush scheduler)
are built once by the application lifespan, stored on ``app.state`` and
torn down explicitly on shutdown.

RULE: FastAPI routes call exactly one entry point, ChatRouter.handle()
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from agents.chat_agent import ChatAgent
from app.core.config import Settings
from llm.langchain_adapter import LangChainChatModel
from llm.streaming import ChatModel
from observability.collector import TraceCollector
from observability.langfuse_sink import LangfuseTraceSink
from observability.scheduler import DeferredFlushScheduler
from observability.sink import ConsoleTraceSink, TraceSink
from orchestration.router import ChatRouter


logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Process-wide state, one per application instance."""
    settings: Settings
    sink: TraceSink
    scheduler: DeferredFlushScheduler
    collector: TraceCollector
    router: ChatRouter

    async def close(self) -> None:
        """
        Teardown order:
        1. close traces still waiting for completion
        2. drain scheduled flushes (bounded by the ceiling)
        3. flush what is left and release the sink
        """
        await self.collector.shutdown()
        drained = await self.scheduler.drain(self.settings.flush_ceiling_seconds)
        if not drained:
            logger.warning("Shutdown ceiling reached with exports still pending")
        await self.sink.shutdown()


def build_sink(settings: Settings) -> TraceSink:
    """Langfuse when tracing is on, console otherwise."""
    if settings.tracing_enabled:
        return LangfuseTraceSink(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host,
            timeout_ms=settings.langfuse_timeout_ms,
        )
    return ConsoleTraceSink(verbose=settings.debug)


def build_runtime(
    settings: Settings,
    model: Optional[ChatModel] = None,
    sink: Optional[TraceSink] = None,
) -> Runtime:
    """
    Wire every component.

    - ChatAgent: intent routing, strategy, context
    - ChatModel: streaming model client (LangChain)
    - TraceCollector: request traces, sampling, completion watchers
    - DeferredFlushScheduler: exports that outlive the handler
    """
    sink = sink or build_sink(settings)
    scheduler = DeferredFlushScheduler(ceiling_seconds=settings.flush_ceiling_seconds)
    collector = TraceCollector(
        sink=sink,
        scheduler=scheduler,
        enabled=settings.tracing_enabled or settings.debug,
        sample_rate=settings.langfuse_sample_rate,
        trace_ttl_seconds=settings.trace_ttl_seconds,
        environment=settings.environment,
    )
    agent = ChatAgent(
        timeout_seconds=settings.agent_timeout_seconds,
        max_attempts=settings.agent_max_attempts,
    )
    router = ChatRouter(
        agent=agent,
        model=model or LangChainChatModel.from_settings(settings),
        collector=collector,
        environment=settings.environment,
        history_limit=settings.trace_history_limit,
    )
    return Runtime(
        settings=settings,
        sink=sink,
        scheduler=scheduler,
        collector=collector,
        router=router,
    )


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise RuntimeError("Application runtime is not initialized")
    return runtime


def get_chat_router(request: Request) -> ChatRouter:
    """The single entry point used by the chat route."""
    return get_runtime(request).router
