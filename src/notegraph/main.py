#!/usr/bin/env python
"""Command line entry point for the notegraph knowledge base."""
import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from notegraph import __version__
from notegraph.config import DEFAULT_TOP_K, config
from notegraph.exceptions import NotegraphError
from notegraph.observability import configure_logging
from notegraph.services.assistant_service import AssistantService
from notegraph.services.generation_client import GenerationClient
from notegraph.services.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Notegraph knowledge base")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("NOTEGRAPH_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level.upper()
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Create a note")
    add.add_argument("title")
    add.add_argument("content", nargs="?", default="")

    edit = sub.add_parser("edit", help="Replace a note's title and content")
    edit.add_argument("note_id")
    edit.add_argument("title")
    edit.add_argument("content", nargs="?", default=None)

    show = sub.add_parser("show", help="Show one note")
    show.add_argument("note_id")

    sub.add_parser("list", help="List notes, most recently updated first")

    remove = sub.add_parser("delete", help="Delete a note")
    remove.add_argument("note_id")

    backlinks = sub.add_parser("backlinks", help="Notes linking to a note")
    backlinks.add_argument("note_id")

    sub.add_parser("tags", help="Tags with usage counts")

    search = sub.add_parser("search", help="Full-text search")
    search.add_argument("query")

    sub.add_parser("graph", help="Nodes and resolved link edges")
    sub.add_parser("stats", help="Store sizes and operation metrics")

    ask = sub.add_parser("ask", help="Ask a question using notes as context")
    ask.add_argument("prompt")
    ask.add_argument("--note-id", default=None)
    ask.add_argument("--top-k", type=int, default=DEFAULT_TOP_K)
    ask.add_argument("--include-all", action="store_true")
    ask.add_argument("--timeout", type=float, default=None)

    return parser.parse_args(argv)


def update_config(args):
    """Update the default config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def run_command(kb: KnowledgeBase, args) -> Any:
    """Dispatch one subcommand against an open knowledge base."""
    if args.command == "add":
        return kb.create_note(args.title, args.content)
    if args.command == "edit":
        return kb.update_note(args.note_id, args.title, args.content)
    if args.command == "show":
        return kb.get_note(args.note_id)
    if args.command == "list":
        return kb.list_notes()
    if args.command == "delete":
        return {"deleted": kb.delete_note(args.note_id)}
    if args.command == "backlinks":
        return kb.backlinks(args.note_id)
    if args.command == "tags":
        return kb.tags()
    if args.command == "search":
        return kb.search(args.query)
    if args.command == "graph":
        return kb.graph()
    if args.command == "stats":
        return kb.stats()
    if args.command == "ask":
        assistant = AssistantService(kb.assembler, GenerationClient.from_config(config))
        return asyncio.run(
            assistant.ask(
                args.prompt,
                note_id=args.note_id,
                top_k=args.top_k,
                include_all=args.include_all,
                timeout=args.timeout,
            )
        )
    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None) -> int:
    """Run one notegraph command and print its result as JSON."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    try:
        with KnowledgeBase(config) as kb:
            result = run_command(kb, args)
    except NotegraphError as e:
        logger.debug(f"Command {args.command} failed: {e}")
        print(json.dumps(e.to_dict(), ensure_ascii=False), file=sys.stderr)
        return 1

    print(json.dumps(_to_jsonable(result), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
