# chatrelay/client/__main__.py
"""
Terminal chat client.

Usage: python -m chatrelay.client <username> <room> [--url ws://host:8000/ws]
Each line typed on stdin is sent to the room.
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from chatrelay.client.connection_client import ConnectionClient
from chatrelay.core.config import settings
from chatrelay.core.logging import setup_logging
from chatrelay.models.message import Message


def _print_message(message: Message) -> None:
    if not message.sender_flag:
        print(f"[{message.room_origin}] {message.sender_username}: {message.content}")


async def chat(username: str, room: str, url: str) -> None:
    async with ConnectionClient(username, url) as client:
        client.on_message(_print_message)
        await client.join_room(room)
        print(f"Joined '{room}' as {username}. Ctrl-D to quit.")
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            text = line.rstrip("\n")
            if text:
                await client.send_message(
                    Message(content=text, sender_username=username, sender_flag=True, room_origin=room)
                )


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="chatrelay-client", description="Chat in a relay room")
    parser.add_argument("username")
    parser.add_argument("room")
    parser.add_argument("--url", default=settings.RELAY_URL)
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    try:
        asyncio.run(chat(args.username, args.room, args.url))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
