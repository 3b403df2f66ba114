#!/usr/bin/env python3
"""
Inspect and recover dead-lettered messages in the relay queue.

    python scripts/dlq.py list [--queue NAME] [--limit N]
    python scripts/dlq.py redrive MESSAGE_ID [MESSAGE_ID ...]
    python scripts/dlq.py redrive --all [--queue NAME]
    python scripts/dlq.py purge [--queue NAME]
    python scripts/dlq.py stats [--queue NAME]
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

# Make project imports available when executing as: python scripts/dlq.py
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv  # noqa: E402

from relay.queue import QueueStore  # noqa: E402
from relay.runner import build_store  # noqa: E402
from relay.settings import load_settings  # noqa: E402


def _format_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


async def _list(store: QueueStore, queue: str | None, limit: int) -> int:
    messages = await store.dead_letters(queue, limit=limit)
    if not messages:
        print("No dead-lettered messages.")
        return 0
    for m in messages:
        print(f"{m.message_id}  sent={_format_ts(m.sent_at)}  receives={m.receive_count}")
        print(f"    {m.body}")
    print(f"{len(messages)} message(s)")
    return 0


async def _redrive(store: QueueStore, queue: str | None, ids: list[str], all_: bool) -> int:
    if all_:
        ids = [m.message_id for m in await store.dead_letters(queue, limit=10_000)]
    failed = 0
    for message_id in ids:
        if await store.redrive(message_id):
            print(f"redriven {message_id}")
        else:
            print(f"not dead-lettered: {message_id}", file=sys.stderr)
            failed += 1
    return 1 if failed else 0


async def _purge(store: QueueStore, queue: str | None) -> int:
    count = await store.purge(queue, status="dead_letter")
    print(f"purged {count} message(s)")
    return 0


async def _stats(store: QueueStore, queue: str | None) -> int:
    print(json.dumps(await store.counts(queue), indent=2))
    return 0


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Relay dead-letter tools")
    parser.add_argument("--queue", help="queue name (default: queue.name from settings)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="show dead-lettered messages")
    p_list.add_argument("--limit", type=int, default=50)

    p_redrive = sub.add_parser("redrive", help="return messages to normal delivery")
    p_redrive.add_argument("message_ids", nargs="*")
    p_redrive.add_argument("--all", action="store_true", dest="all_")

    sub.add_parser("purge", help="delete all dead-lettered messages")
    sub.add_parser("stats", help="available / in-flight / dead-letter counts")
    return parser


async def _run(args: argparse.Namespace) -> int:
    store = build_store(load_settings(), PROJECT_ROOT)
    try:
        if args.command == "list":
            return await _list(store, args.queue, args.limit)
        if args.command == "redrive":
            if not args.message_ids and not args.all_:
                print("redrive needs message ids or --all", file=sys.stderr)
                return 2
            return await _redrive(store, args.queue, args.message_ids, args.all_)
        if args.command == "purge":
            return await _purge(store, args.queue)
        return await _stats(store, args.queue)
    finally:
        await store.close()


def main() -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = _parser().parse_args()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
