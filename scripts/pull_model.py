#!/usr/bin/env python3
"""Pull a model from a synchronous caller, printing progress; Ctrl+C cancels."""

import argparse
import concurrent.futures
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ollama_utils import BackgroundLoop, CancellationToken, pull_model  # noqa: E402
from ollama_utils.infrastructure.config import load_config  # noqa: E402
from ollama_utils.infrastructure.ollama import OllamaModelService  # noqa: E402
from ollama_utils.shared.logging import setup_logging_from_config  # noqa: E402


def _print_progress(progress) -> None:
    if progress.total and progress.completed is not None:
        pct = 100.0 * progress.completed / progress.total
        print(f"\r{progress.status}: {pct:5.1f}%", end="", flush=True)
    else:
        print(f"\n{progress.status}", end="", flush=True)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("model", help="Model name, e.g. llama3.2")
    args = parser.parse_args()

    config = load_config()
    setup_logging_from_config(config)
    token = CancellationToken()

    with BackgroundLoop() as loop:
        service = OllamaModelService(config.ollama)
        future = pull_model(service, args.model, _print_progress, cancel=token, scheduler=loop)
        try:
            statuses = future.result()
        except KeyboardInterrupt:
            token.cancel("interrupted")
            try:
                future.result(timeout=10)
            except (concurrent.futures.CancelledError, concurrent.futures.TimeoutError):
                pass
            print("\nCancelled.")
            return 130
    print(f"\nDone: {len(statuses)} progress updates.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
