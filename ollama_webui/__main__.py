from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from .llm import OllamaClient, OllamaError
from .settings import SettingsManager
from .streaming import LineTooLongError, TextStreamSink, relay


def _settings_manager() -> SettingsManager:
    data_dir = Path(os.environ.get("WEBUI_DATA_DIR", "data"))
    return SettingsManager(data_dir / "config.json")


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    server = _settings_manager().section("server")
    host = args.host or server.get("host", "127.0.0.1")
    port = args.port or int(server.get("port", 3000))
    print(f"Server ready on http://{host}:{port}")
    print("Open your browser at that address to try the page")
    uvicorn.run("ollama_webui.main:app", host=host, port=port, log_level="info")
    return 0


def ask(args: argparse.Namespace) -> int:
    config = _settings_manager().ollama_snapshot()
    client = OllamaClient(config)
    try:
        response = client.open_stream(args.prompt)
    except OllamaError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    try:
        relay(
            response.iter_content(chunk_size=None),
            TextStreamSink(sys.stdout),
            max_line_length=config.max_line_length,
            stop_on_done=config.stop_on_done,
        )
    except LineTooLongError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    finally:
        response.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ollama_webui", description="Ollama travel web UI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="run the web server")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.set_defaults(func=serve)

    ask_parser = subparsers.add_parser("ask", help="stream one answer to stdout")
    ask_parser.add_argument("prompt")
    ask_parser.set_defaults(func=ask)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
