#!/usr/bin/env python3
"""Check a (remote) Ollama host: list models and stream a short chat reply."""

import asyncio
import sys
from pathlib import Path

# Add the project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


async def main() -> None:
    from ollama_utils import chat
    from ollama_utils.domain.ports.model_service import ChatMessage, ChatRequest
    from ollama_utils.infrastructure.config import load_config
    from ollama_utils.infrastructure.ollama import OllamaModelService

    config = load_config()
    service = OllamaModelService(config.ollama)
    print(f"Ollama host from config: {config.ollama.host}")
    print(f"Timeout: {config.ollama.timeout}s")

    print("\n--- Availability ---")
    if not await service.is_available():
        print("Host is not reachable.")
        return

    print("\n--- Models ---")
    models = await service.list_models()
    print(f"OK. Models: {len(models)}")
    for name in models[:10]:
        print(f"  - {name}")
    if len(models) > 10:
        print(f"  ... and {len(models) - 10} more")

    model = config.ollama.default_model or (models[0] if models else None)
    if not model:
        print("No model to test chat with.")
        return

    print(f"\n--- Streaming chat (model: {model}) ---")
    request = ChatRequest(
        model=model,
        messages=[ChatMessage(role="user", content="Answer with one word: hello")],
    )
    try:
        parts = await chat(service, request, lambda text: print(text, end="", flush=True))
        print(f"\nOK, {len(parts)} fragments.")
    except Exception as e:
        print(f"\nError: {e}")

    print("\nCheck finished.")


if __name__ == "__main__":
    asyncio.run(main())
