"""Model operations in callback-plus-list form.

Each operation starts the corresponding streaming call of a model service on
a scheduler and returns the handle right away. The caller gets every
surfaced chunk through on_response while the stream runs and the full
ordered list when the handle resolves.
"""

import logging
from typing import AsyncIterator, Callable, Sequence

from ollama_utils.application.streaming import (
    Handle,
    Scheduler,
    cancel_scope,
    close_source,
    run_streaming,
    schedule,
)
from ollama_utils.domain.entities.cancellation import CancellationToken
from ollama_utils.domain.ports.model_service import (
    ChatRequest,
    ChatSessionPort,
    ConversationContext,
    GenerateChunk,
    GenerateRequest,
    ModelServicePort,
    PullStatus,
)
from ollama_utils.domain.services.projectors import chat_content, generate_response, identity

logger = logging.getLogger(__name__)


def delete_model(
    service: ModelServicePort,
    model: str,
    cancel: CancellationToken | None = None,
    scheduler: Scheduler | None = None,
) -> Handle:
    """Delete a model. The handle resolves to None."""

    async def _delete() -> None:
        with cancel_scope(cancel):
            await service.delete_model(model, cancel)

    return schedule(_delete(), scheduler)


def pull_model(
    service: ModelServicePort,
    model: str,
    on_response: Callable[[PullStatus], None] | None,
    cancel: CancellationToken | None = None,
    scheduler: Scheduler | None = None,
) -> Handle:
    """Pull a model, reporting each raw progress chunk."""
    return run_streaming(
        lambda: service.pull_model(model, cancel),
        on_response,
        identity,
        cancel,
        scheduler,
        label=f"pull:{model}",
    )


def chat(
    service: ModelServicePort,
    request: ChatRequest,
    on_response: Callable[[str], None] | None,
    cancel: CancellationToken | None = None,
    scheduler: Scheduler | None = None,
) -> Handle:
    """Stream a chat reply; chunks without message content are skipped."""
    return run_streaming(
        lambda: service.chat(request, cancel),
        on_response,
        chat_content,
        cancel,
        scheduler,
        label=f"chat:{request.model or service.default_model}",
    )


def generate(
    service: ModelServicePort,
    prompt: str | GenerateRequest,
    on_response: Callable[[str], None] | None,
    context: ConversationContext | None = None,
    cancel: CancellationToken | None = None,
    scheduler: Scheduler | None = None,
) -> Handle:
    """Stream a completion for a prompt or a full request.

    When *context* is given its tokens are sent with the request and replaced
    by the context the server returns on the final chunk, so the next call
    with the same object continues the conversation.
    """
    if isinstance(prompt, GenerateRequest):
        request = prompt
    else:
        request = GenerateRequest(prompt=prompt)
    if context is not None and context.tokens:
        request = request.model_copy(update={"context": list(context.tokens)})

    def _source() -> AsyncIterator[GenerateChunk]:
        chunks = service.generate(request, cancel)
        if context is None:
            return chunks
        return _track_context(chunks, context)

    return run_streaming(
        _source,
        on_response,
        generate_response,
        cancel,
        scheduler,
        label=f"generate:{request.model or service.default_model}",
    )


async def _track_context(
    chunks: AsyncIterator[GenerateChunk], context: ConversationContext
) -> AsyncIterator[GenerateChunk]:
    """Pass chunks through, storing the context sent with the final one."""
    try:
        async for chunk in chunks:
            if chunk is not None and getattr(chunk, "done", False):
                tokens = getattr(chunk, "context", None)
                if tokens:
                    context.tokens = list(tokens)
                    logger.debug("Conversation context updated: %d tokens", len(context.tokens))
            yield chunk
    finally:
        await close_source(chunks)


def send_message(
    session: ChatSessionPort,
    message: str,
    on_response: Callable[[str], None] | None,
    images: Sequence[str] = (),
    cancel: CancellationToken | None = None,
    scheduler: Scheduler | None = None,
) -> Handle:
    """Send a message on a chat session, reporting each reply fragment.

    images: base64-encoded images attached to the message.
    """
    return run_streaming(
        lambda: session.send(message, images, cancel),
        on_response,
        identity,
        cancel,
        scheduler,
        label="send_message",
    )

