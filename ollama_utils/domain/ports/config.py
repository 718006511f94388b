"""Config Port - interface for configuration access."""

from typing import Protocol

from pydantic import BaseModel


class OllamaConfig(BaseModel):
    """Ollama connection configuration."""

    host: str = "http://localhost:11434"
    timeout: int = 120  # read timeout, seconds
    connect_timeout: float = 5.0
    default_model: str | None = None  # used when a request leaves model unset
    keep_alive: str | None = None  # e.g. "5m"; None = server default
    # Optional: None = use model defaults.
    num_ctx: int | None = None
    num_predict: int | None = None


class AppConfig(BaseModel):
    """Full library configuration."""

    ollama: OllamaConfig = OllamaConfig()
    log_level: str = "INFO"
    # Log file: path relative to cwd or absolute. Empty = only stdout.
    log_file: str = ""
    log_rotation_max_mb: int = 5
    log_rotation_backups: int = 3


class ConfigPort(Protocol):
    """Interface for configuration providers."""

    def get_config(self) -> AppConfig:
        """Get the full configuration."""
        ...
