"""TOML configuration loader with env overrides."""

import logging
import os
import tomllib
from pathlib import Path

from ollama_utils.domain.ports.config import AppConfig, OllamaConfig

logger = logging.getLogger(__name__)


def _load_toml(path: Path) -> dict:
    """Load TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _apply_env_overrides(config: dict) -> dict:
    """Apply environment variable overrides."""
    if host := os.getenv("OLLAMA_HOST"):
        config.setdefault("ollama", {})["host"] = host
    if model := os.getenv("OLLAMA_MODEL"):
        config.setdefault("ollama", {})["default_model"] = model.strip() or None
    if timeout := os.getenv("OLLAMA_TIMEOUT"):
        try:
            config.setdefault("ollama", {})["timeout"] = int(timeout)
        except ValueError:
            logger.warning("Invalid OLLAMA_TIMEOUT env value: %r, ignoring", timeout)
    if keep_alive := os.getenv("OLLAMA_KEEP_ALIVE"):
        config.setdefault("ollama", {})["keep_alive"] = keep_alive.strip() or None
    if level := os.getenv("LOG_LEVEL"):
        config.setdefault("logging", {})["level"] = level.upper()
    if path := os.getenv("LOG_FILE"):
        config.setdefault("logging", {})["file"] = path.strip()
    return config


def load_config(config_dir: Path | None = None) -> AppConfig:
    """Load configuration from TOML files with env overrides.

    Loads default.toml, then development.toml if exists.
    """
    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent.parent.parent / "config"

    config: dict = {}

    default_path = config_dir / "default.toml"
    if default_path.exists():
        config = _load_toml(default_path)

    dev_path = config_dir / "development.toml"
    if dev_path.exists():
        dev_config = _load_toml(dev_path)
        for key, value in dev_config.items():
            if isinstance(value, dict) and key in config and isinstance(config[key], dict):
                config[key] = {**config[key], **value}
            else:
                config[key] = value

    config = _apply_env_overrides(config)

    ollama = OllamaConfig(**(config.get("ollama") or {}))
    logging_raw = config.get("logging") or {}

    return AppConfig(
        ollama=ollama,
        log_level=logging_raw.get("level", "INFO"),
        log_file=(logging_raw.get("file") or "").strip(),
        log_rotation_max_mb=int(logging_raw.get("log_rotation_max_mb", 5)),
        log_rotation_backups=int(logging_raw.get("log_rotation_backups", 3)),
    )
