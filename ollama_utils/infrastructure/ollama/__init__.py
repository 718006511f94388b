"""Ollama implementation of the model service port."""

from ollama_utils.infrastructure.ollama.model_service import OllamaModelService

__all__ = ["OllamaModelService"]
