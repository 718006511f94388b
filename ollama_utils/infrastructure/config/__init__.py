"""Configuration loading."""

from ollama_utils.infrastructure.config.toml_loader import load_config

__all__ = ["load_config"]
