"""
CLI entry point.

Queue maintenance (status, cleanup, cancel), one-off capture and search,
and the ingestion worker itself.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from mnemo import __version__


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mnemo",
        description="mnemo - memory capture and retrieval",
    )
    parser.add_argument("--config", "-c", help="Path to a YAML config file")
    parser.add_argument("--version", "-v", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("queue-status", help="Show ingestion queue counts and jobs")
    status_parser.add_argument("--limit", type=int, default=20, help="Max jobs listed per state")

    subparsers.add_parser("clean-queue", help="Remove completed ingestion jobs")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel an ingestion job")
    cancel_parser.add_argument("job_id", help="Job id returned by capture")

    capture_parser = subparsers.add_parser("capture", help="Submit text for ingestion")
    capture_parser.add_argument("--user", "-u", required=True, help="User id")
    source = capture_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", "-t", help="Raw text to capture")
    source.add_argument("--file", "-f", help="Read raw text from a file")
    capture_parser.add_argument("--url", help="Source URL")
    capture_parser.add_argument("--title", help="Title")
    capture_parser.add_argument("--source", default="cli", help="Capture source label")

    search_parser = subparsers.add_parser("search", help="Search a user's memories")
    search_parser.add_argument("query", help="Natural-language query")
    search_parser.add_argument("--user", "-u", required=True, help="User id")
    search_parser.add_argument("--limit", "-n", type=int, help="Max results")
    search_parser.add_argument("--policy", "-p", help="chat / planning / profile / summarization / insight")
    search_parser.add_argument("--context-only", action="store_true", help="Return context without an answer")

    subparsers.add_parser("worker", help="Run the ingestion worker")

    return parser


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _with_container(settings, fn: Callable[[Any], Awaitable[Any]]) -> Any:
    from mnemo.core.di import build_container

    container = await build_container(settings)
    try:
        return await fn(container)
    finally:
        await container.background.drain()
        await container.close()


async def _queue_status(container, limit: int) -> None:
    status = await container.queue.status(limit=limit)
    _print(status.to_dict())


async def _clean_queue(container) -> None:
    report = await container.queue.cleanup()
    counts = report.to_dict()
    print(f"Removed {report.removed} completed job(s); {report.remaining} remaining")
    _print(counts)


async def _cancel(container, job_id: str) -> None:
    _print(await container.queue.cancel(job_id))


async def _capture(container, parsed) -> None:
    text = parsed.text if parsed.text is not None else Path(parsed.file).read_text(encoding="utf-8")
    metadata = {"url": parsed.url, "title": parsed.title, "source": parsed.source}
    result = await container.queue.enqueue(parsed.user, text, metadata)
    _print(result.to_dict())


async def _search(container, parsed) -> None:
    from mnemo.retrieval.engine import SearchRequest

    response = await container.search_engine.search(
        SearchRequest(
            user_id=parsed.user,
            query=parsed.query,
            limit=parsed.limit,
            policy=parsed.policy,
            context_only=parsed.context_only,
        )
    )
    _print(response.to_dict())


def _run_worker(config_path: Optional[str] = None) -> None:
    if config_path:
        # WorkerSettings reads the process-wide settings at import time
        os.environ["MNEMO_CONFIG"] = config_path

    from arq import run_worker

    from mnemo.infrastructure.queue.arq_worker import WorkerSettings

    run_worker(WorkerSettings)


def run_cli(args: Optional[list] = None) -> int:
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.version:
        print(f"mnemo v{__version__}")
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    try:
        from mnemo.config import configure_logging, load_validated_settings

        settings = load_validated_settings(parsed.config)
        configure_logging(settings.logging)

        if parsed.command == "worker":
            _run_worker(parsed.config)
        elif parsed.command == "queue-status":
            asyncio.run(_with_container(settings, lambda c: _queue_status(c, parsed.limit)))
        elif parsed.command == "clean-queue":
            asyncio.run(_with_container(settings, _clean_queue))
        elif parsed.command == "cancel":
            asyncio.run(_with_container(settings, lambda c: _cancel(c, parsed.job_id)))
        elif parsed.command == "capture":
            asyncio.run(_with_container(settings, lambda c: _capture(c, parsed)))
        elif parsed.command == "search":
            asyncio.run(_with_container(settings, lambda c: _search(c, parsed)))
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(run_cli())
