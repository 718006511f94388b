"""Chat session - conversation handle that keeps its own message history."""

import logging
from typing import AsyncIterator, Sequence

from ollama_utils.application.streaming import close_source
from ollama_utils.domain.entities.cancellation import CancellationToken
from ollama_utils.domain.ports.model_service import ChatMessage, ChatRequest, ModelServicePort
from ollama_utils.domain.services.projectors import chat_content

logger = logging.getLogger(__name__)


class ChatSession:
    """Multi-turn chat over a model service.

    Contract: send() appends the user message before streaming. The assistant
    reply is appended only after the stream completes, so a failed or
    cancelled turn leaves the user message without an answer.
    """

    def __init__(
        self,
        service: ModelServicePort,
        model: str | None = None,
        system_prompt: str | None = None,
        options: dict | None = None,
    ) -> None:
        """Initialize with service, optional model override and system prompt."""
        self._service = service
        self.model = model
        self.options = options
        self.messages: list[ChatMessage] = []
        if system_prompt:
            self.messages.append(ChatMessage(role="system", content=system_prompt))

    async def send(
        self,
        message: str,
        images: Sequence[str] = (),
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """Send a user message and stream the assistant reply as text fragments.

        images: base64-encoded images attached to the user message.
        """
        self.messages.append(
            ChatMessage(role="user", content=message, images=list(images) or None)
        )
        request = ChatRequest(
            model=self.model,
            messages=list(self.messages),
            options=self.options,
        )
        parts: list[str] = []
        stream = self._service.chat(request, cancel)
        try:
            async for chunk in stream:
                text = chat_content(chunk)
                if text is None:
                    continue
                parts.append(text)
                yield text
        finally:
            await close_source(stream)
        self.messages.append(ChatMessage(role="assistant", content="".join(parts)))
        logger.debug("Chat turn done: %d messages in history", len(self.messages))

    def clear(self, keep_system: bool = True) -> None:
        """Drop the history, optionally keeping the system prompt."""
        if keep_system:
            self.messages = [m for m in self.messages if m.role == "system"]
        else:
            self.messages = []
