"""Callback-plus-list adapters over the Ollama streaming client."""

from ollama_utils.application.chat_session import ChatSession
from ollama_utils.application.operations import (
    chat,
    delete_model,
    generate,
    pull_model,
    send_message,
)
from ollama_utils.application.streaming import (
    BackgroundLoop,
    StreamAggregator,
    StreamConsumedError,
    run_streaming,
)
from ollama_utils.domain.entities.cancellation import CancellationToken

__all__ = [
    "BackgroundLoop",
    "CancellationToken",
    "ChatSession",
    "StreamAggregator",
    "StreamConsumedError",
    "chat",
    "delete_model",
    "generate",
    "pull_model",
    "run_streaming",
    "send_message",
]
