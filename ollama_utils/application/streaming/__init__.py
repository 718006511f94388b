"""Streaming aggregation and scheduling."""

from ollama_utils.application.streaming.aggregator import (
    StreamAggregator,
    StreamConsumedError,
    close_source,
    run_streaming,
)
from ollama_utils.application.streaming.scheduler import (
    BackgroundLoop,
    Handle,
    Scheduler,
    cancel_scope,
    loop_scheduler,
    schedule,
)

__all__ = [
    "BackgroundLoop",
    "Handle",
    "Scheduler",
    "StreamAggregator",
    "StreamConsumedError",
    "cancel_scope",
    "close_source",
    "loop_scheduler",
    "run_streaming",
    "schedule",
]
