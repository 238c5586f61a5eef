"""CLI for the Lectern RAG core."""

import argparse
import asyncio
import sys
import uuid
from typing import List

from . import __version__
from .events import AnswerEvent, CallbackEventSink, ChunkEvent, DoneEvent, ErrorEvent, SourcesEvent
from .logging_utils import setup_logging


class ConsolePrinter:
    """Writes answer events to the terminal as they arrive."""

    def __init__(self, show_sources: bool = True):
        self.show_sources = show_sources
        self.sources: List[str] = []
        self.failed = False

    def __call__(self, event: AnswerEvent) -> None:
        if isinstance(event, SourcesEvent):
            self.sources = [
                f"{s.doc_title} ({s.doc_slug})" + (f" > {s.heading_context}" if s.heading_context else "")
                for s in event.sources
            ]
        elif isinstance(event, ChunkEvent):
            sys.stdout.write(event.content)
            sys.stdout.flush()
        elif isinstance(event, DoneEvent):
            print()
            if event.cancelled:
                print("[cancelled]")
            if self.show_sources and self.sources:
                print("\nSources:")
                for i, source in enumerate(self.sources, 1):
                    print(f"  {i}. {source}")
        elif isinstance(event, ErrorEvent):
            self.failed = True
            print(f"Error: {event.message}", file=sys.stderr)


def ask(args: argparse.Namespace) -> None:
    """Answer a question against the project database."""
    from .lectern import create_lectern

    printer = ConsolePrinter(show_sources=not args.no_sources)

    async def run() -> None:
        async with create_lectern(args.db, CallbackEventSink(printer)) as lectern:
            await lectern.ask_question(uuid.uuid4().hex, args.question, args.provider)

    asyncio.run(run())
    if printer.failed:
        sys.exit(1)


def test_provider(args: argparse.Namespace) -> None:
    """Check a provider's credentials or reachability."""
    from .errors import LecternError
    from .lectern import Lectern
    from .config import Settings

    async def run() -> str:
        # No project database is needed for a connection test
        async with Lectern(Settings.from_env, _no_store, CallbackEventSink(lambda e: None)) as lectern:
            return await lectern.test_provider_connection(args.provider)

    try:
        print(asyncio.run(run()))
    except LecternError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _no_store():
    raise RuntimeError("No project database configured")


def serve(args: argparse.Namespace) -> None:
    """Start the REST API server."""
    try:
        import uvicorn
        from .api import create_app
    except ImportError:
        print("Error: API dependencies not installed.")
        print("  Run: pip install 'lectern[api]'")
        sys.exit(1)

    app = create_app(db_path=args.db)

    print(f"Starting Lectern API server on http://{args.host}:{args.port}")
    print(f"  Database: {args.db}")
    print(f"  Docs: http://{args.host}:{args.port}/docs\n")

    uvicorn.run(app, host=args.host, port=args.port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lectern",
        description="Lectern - question answering over an engineering handbook",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  lectern ask "How do we deploy?"       Answer a question
  lectern test-provider openai          Check provider credentials
  lectern serve                         Start REST API server

Environment variables:
  OPENAI_API_KEY              OpenAI chat and embeddings
  ANTHROPIC_API_KEY           Anthropic chat
  GEMINI_API_KEY              Gemini chat and embeddings
  OLLAMA_BASE_URL             Local Ollama server (default: http://localhost:11434)
  LECTERN_PREFERRED_PROVIDER  Provider used when several are configured
  LECTERN_LOG_LEVEL           Logging level (default: INFO)
"""
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--db", type=str, default="lectern.db", help="Project database path (default: lectern.db)"
    )
    parser.add_argument(
        "--log-level", type=str, default=None, help="Override LECTERN_LOG_LEVEL"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Ask command
    ask_parser = subparsers.add_parser("ask", help="Answer a question")
    ask_parser.add_argument("question", type=str, help="Question to answer")
    ask_parser.add_argument(
        "--provider", type=str, default=None, help="openai, anthropic, gemini or ollama"
    )
    ask_parser.add_argument(
        "--no-sources", action="store_true", help="Do not list sources after the answer"
    )
    ask_parser.set_defaults(func=ask)

    # Test-provider command
    test_parser = subparsers.add_parser("test-provider", help="Check provider connectivity")
    test_parser.add_argument("provider", type=str, help="openai, anthropic, gemini or ollama")
    test_parser.set_defaults(func=test_provider)

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start REST API server")
    serve_parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="Host to bind (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=8000, help="Port to bind (default: 8000)"
    )
    serve_parser.set_defaults(func=serve)

    return parser


def main() -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    setup_logging(args.log_level)
    args.func(args)


if __name__ == "__main__":
    main()
