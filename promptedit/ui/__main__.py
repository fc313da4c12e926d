# promptedit/ui/__main__.py
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from promptedit.api.client import ClassifiedError, ImageEditClient
from promptedit.ui.server import run_server


def _make_client(*, mock: bool, model: str | None, timeout_s: float | None) -> ImageEditClient:
    if mock:
        from promptedit.api.mock_client import MockImageEditClient

        return MockImageEditClient()

    from promptedit.api.gemini_client import GeminiImageEditClient, GeminiImageEditConfig, MODEL_DEFAULT

    config = GeminiImageEditConfig(model=model or MODEL_DEFAULT, timeout_s=timeout_s)
    return GeminiImageEditClient(config=config)


def main() -> None:
    p = argparse.ArgumentParser(prog="python -m promptedit.ui")
    p.add_argument("initial_image", type=str, nargs="?", default=None, help="Optional image to load at start.")
    p.add_argument("--host", type=str, default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--model", type=str, default=None, help="Gemini image model name.")
    p.add_argument("--timeout", type=float, default=None, help="Remote call timeout in seconds.")
    p.add_argument("--mock", action="store_true", help="Use the offline mock editor instead of Gemini.")
    p.add_argument("--log-level", type=str, default="INFO")
    args = p.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    initial = None
    if args.initial_image:
        initial = Path(args.initial_image).expanduser().resolve()
        if not initial.exists():
            raise SystemExit("Initial image not found.")

    try:
        client = _make_client(mock=args.mock, model=args.model, timeout_s=args.timeout)
    except ClassifiedError as e:
        raise SystemExit(str(e)) from e

    run_server(client=client, initial_image=initial, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
