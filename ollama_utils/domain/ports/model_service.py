"""Model Service Port - streaming operations of an Ollama-style model server."""

from typing import Any, AsyncIterator, Protocol, Sequence

from pydantic import BaseModel, Field

from ollama_utils.domain.entities.cancellation import CancellationToken


class ChatMessage(BaseModel):
    """Single message in a conversation."""

    role: str  # "system" | "user" | "assistant" | "tool"
    content: str
    images: list[str] | None = None  # base64-encoded


class ChatRequest(BaseModel):
    """Streaming chat request. model=None uses the service default."""

    model: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    options: dict[str, Any] | None = None
    format: str | dict[str, Any] | None = None  # "json" or a JSON schema
    keep_alive: str | float | None = None


class GenerateRequest(BaseModel):
    """Streaming completion request. model=None uses the service default."""

    model: str | None = None
    prompt: str = ""
    system: str | None = None
    context: list[int] | None = None  # token context from a previous response
    images: list[str] | None = None
    options: dict[str, Any] | None = None
    format: str | dict[str, Any] | None = None
    keep_alive: str | float | None = None


class ConversationContext(BaseModel):
    """Token context carried across generate calls.

    Ollama returns the context on the final chunk of a generation; sending it
    back with the next prompt continues the same conversation.
    """

    tokens: list[int] = Field(default_factory=list)


class MessageLike(Protocol):
    """Message part of a chat chunk."""

    content: str | None


class ChatChunk(Protocol):
    """One chunk of a streaming chat response (ollama.ChatResponse)."""

    message: MessageLike | None


class GenerateChunk(Protocol):
    """One chunk of a streaming generation (ollama.GenerateResponse)."""

    response: str | None
    done: bool | None
    context: Sequence[int] | None


class PullStatus(Protocol):
    """Progress chunk of a model pull (ollama.ProgressResponse)."""

    status: str | None
    digest: str | None
    total: int | None
    completed: int | None


class ModelServicePort(Protocol):
    """Interface for a model server client (Ollama)."""

    @property
    def default_model(self) -> str | None:
        """Model used when a request leaves model unset."""
        ...

    async def delete_model(self, model: str, cancel: CancellationToken | None = None) -> None:
        """Delete a model from the server (single request/response)."""
        ...

    def pull_model(
        self, model: str, cancel: CancellationToken | None = None
    ) -> AsyncIterator[PullStatus]:
        """Pull a model, yielding progress chunks."""
        ...

    def chat(
        self, request: ChatRequest, cancel: CancellationToken | None = None
    ) -> AsyncIterator[ChatChunk]:
        """Stream a chat response."""
        ...

    def generate(
        self, request: GenerateRequest, cancel: CancellationToken | None = None
    ) -> AsyncIterator[GenerateChunk]:
        """Stream a completion."""
        ...


class ChatSessionPort(Protocol):
    """A chat handle that keeps its own history."""

    def send(
        self,
        message: str,
        images: Sequence[str] = (),
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """Send a user message and stream the reply as text fragments."""
        ...
