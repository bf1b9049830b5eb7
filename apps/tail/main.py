"""Public chat tail.

Joins the public chat under a guest name, prints messages as they arrive and
sends each line typed on stdin. Without SUPABASE_URL/SUPABASE_ANON_KEY it
runs against the in-memory backend.

Usage:
    cd python && python ../apps/tail/main.py --name Ranger
"""

import argparse
import asyncio
import logging
import sys

from kvrp.clients import open_clients
from kvrp.config import get_settings
from kvrp.errors import InvalidRequestError
from kvrp.logging import configure_logging, get_logger
from kvrp.session import guest_session
from kvrp.sync.feeds import public_chat_feed
from kvrp.sync.presenter import MessageView

logger = get_logger(__name__)


def render(view: MessageView) -> str:
    line = f"[{view.time_label}] {view.author}: {view.text}"
    if view.reply is not None:
        line = f"  > {view.reply.author}: {view.reply.snippet}\n{line}"
    for attachment in view.attachments:
        line += f"\n    {attachment.kind.value.lower()}: {attachment.url}"
    if view.reactions:
        line += "\n    " + " ".join(f"{r.emoji}{r.count}" for r in view.reactions)
    return line


async def run(name: str) -> None:
    session = guest_session(name)
    async with open_clients() as clients:
        feed = public_chat_feed(clients, session)
        printed: set[str] = set()

        def print_new() -> None:
            for view in feed.views():
                if view.id not in printed:
                    printed.add(view.id)
                    print(render(view), flush=True)

        feed.watch(print_new)
        async with feed:
            print_new()
            loop = asyncio.get_running_loop()
            while True:
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    break
                if line.strip():
                    await feed.on_send(line)


def main() -> int:
    parser = argparse.ArgumentParser(description="Tail the KVRP public chat.")
    parser.add_argument("--name", required=True, help="Guest display name")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(
        json_format=settings.log_json, level=logging.DEBUG if args.debug else logging.INFO
    )

    try:
        asyncio.run(run(args.name))
    except InvalidRequestError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("tail_interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
