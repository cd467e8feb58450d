# Observability Package
from observability.trace import TraceState, Usage
from observability.sink import TraceSink, ConsoleTraceSink, InMemoryTraceSink
from observability.scheduler import DeferredFlushScheduler
from observability.coordinator import RequestTrace
from observability.collector import TraceCollector

__all__ = [
    "TraceState",
    "Usage",
    "TraceSink",
    "ConsoleTraceSink",
    "InMemoryTraceSink",
    "DeferredFlushScheduler",
    "RequestTrace",
    "TraceCollector",
]
