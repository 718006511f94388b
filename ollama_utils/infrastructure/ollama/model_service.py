"""Ollama model service - implements ModelServicePort over ollama.AsyncClient."""

import logging
from typing import Any, AsyncIterator

import httpx
from ollama import AsyncClient, ChatResponse, GenerateResponse, ProgressResponse

from ollama_utils.domain.entities.cancellation import CancellationToken
from ollama_utils.domain.ports.config import OllamaConfig
from ollama_utils.domain.ports.model_service import ChatRequest, GenerateRequest

logger = logging.getLogger(__name__)


class OllamaModelService:
    """Ollama implementation of ModelServicePort.

    Streams are relayed chunk by chunk; the cancellation token is checked
    between chunks. Errors from the client (ollama.ResponseError, httpx
    transport errors) propagate unchanged.
    """

    def __init__(self, config: OllamaConfig) -> None:
        self._config = config
        # connect: fail fast when the host is down; read: full response timeout.
        read_timeout = float(config.timeout) if config.timeout else 120.0
        timeout = httpx.Timeout(
            connect=config.connect_timeout,
            read=read_timeout,
            write=read_timeout,
            pool=30.0,
        )
        self._client = AsyncClient(host=config.host, timeout=timeout)

    @property
    def default_model(self) -> str | None:
        """Model used when a request leaves model unset."""
        return self._config.default_model

    def _resolve_model(self, model: str | None) -> str:
        resolved = model or self._config.default_model
        if not resolved:
            raise ValueError("No model given and ollama.default_model is not configured")
        return resolved

    def _options(self, options: dict[str, Any] | None) -> dict[str, Any] | None:
        """Merge num_ctx / num_predict from config under request options."""
        merged: dict[str, Any] = {}
        if self._config.num_ctx is not None:
            merged["num_ctx"] = self._config.num_ctx
        if self._config.num_predict is not None:
            merged["num_predict"] = self._config.num_predict
        if options:
            merged.update(options)
        return merged or None

    def _keep_alive(self, keep_alive: str | float | None) -> str | float | None:
        return keep_alive if keep_alive is not None else self._config.keep_alive

    async def delete_model(self, model: str, cancel: CancellationToken | None = None) -> None:
        """Delete a model from the server."""
        if cancel is not None:
            cancel.raise_if_cancelled()
        await self._client.delete(model)
        logger.info("Deleted model %s", model)

    async def pull_model(
        self, model: str, cancel: CancellationToken | None = None
    ) -> AsyncIterator[ProgressResponse]:
        """Pull a model, yielding progress chunks."""
        logger.info("Pulling model %s", model)
        stream = await self._client.pull(model, stream=True)
        async for progress in stream:
            if cancel is not None:
                cancel.raise_if_cancelled()
            yield progress

    async def chat(
        self, request: ChatRequest, cancel: CancellationToken | None = None
    ) -> AsyncIterator[ChatResponse]:
        """Stream a chat response."""
        model = self._resolve_model(request.model)
        messages = [m.model_dump(exclude_none=True) for m in request.messages]
        logger.debug("Chat request: model=%s, %d messages", model, len(messages))
        stream = await self._client.chat(
            model=model,
            messages=messages,
            options=self._options(request.options),
            format=request.format,
            keep_alive=self._keep_alive(request.keep_alive),
            stream=True,
        )
        async for chunk in stream:
            if cancel is not None:
                cancel.raise_if_cancelled()
            yield chunk

    async def generate(
        self, request: GenerateRequest, cancel: CancellationToken | None = None
    ) -> AsyncIterator[GenerateResponse]:
        """Stream a completion."""
        model = self._resolve_model(request.model)
        logger.debug("Generate request: model=%s, context=%d tokens", model, len(request.context or []))
        stream = await self._client.generate(
            model=model,
            prompt=request.prompt,
            system=request.system,
            context=request.context,
            images=request.images,
            options=self._options(request.options),
            format=request.format,
            keep_alive=self._keep_alive(request.keep_alive),
            stream=True,
        )
        async for chunk in stream:
            if cancel is not None:
                cancel.raise_if_cancelled()
            yield chunk

    async def is_available(self) -> bool:
        """Check if Ollama server is available. Fail-fast, no stale cache."""
        try:
            async with httpx.AsyncClient(timeout=self._config.connect_timeout) as client:
                resp = await client.get(f"{self._config.host.rstrip('/')}/api/tags")
                if resp.status_code == 200:
                    return True
        except Exception as e:
            logger.debug("Ollama availability check failed: %s", e)
        return False

    async def list_models(self) -> list[str]:
        """List models installed on the server."""
        try:
            resp = await self._client.list()
            if not resp.models:
                return []
            return [m.model for m in resp.models if m.model]
        except (httpx.ConnectTimeout, httpx.ConnectError, ConnectionError) as e:
            logger.debug("Ollama list_models failed (unreachable): %s", e)
            return []
        except Exception as e:
            logger.warning("Ollama list_models failed: %s", e, exc_info=True)
            return []
