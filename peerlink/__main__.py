# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2025 PeerLink
#
# This file is part of PeerLink.
#
# PeerLink is free software: you can redistribute it and/or modify it under
# the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# PeerLink is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY
# or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.

"""Join a PeerLink room from the command line.

    python -m peerlink my-room --relay-url ws://localhost:8001

Status changes and chat messages are logged until interrupted.
"""

import argparse
import asyncio
import logging

from .core.config import settings
from .room import Room
from .session.identity import PeerIdentity
from .session.state import ConnectionStatus
from .signaling.envelope import ChatMessage
from .signaling.websocket import WebSocketBroadcastTransport

logger = logging.getLogger("peerlink")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="peerlink", description="Two-party peer connection over a broadcast relay"
    )
    parser.add_argument("room", help="Room identifier shared with the peer")
    parser.add_argument(
        "--relay-url",
        default=settings.relay_url,
        help=f"Broadcast relay base URL (default: {settings.relay_url})",
    )
    parser.add_argument("--identity", default=None, help="Fixed peer identity (random if omitted)")
    parser.add_argument("--chat", default=None, help="Chat message to send once connected")
    parser.add_argument("--verbose", action="store_true", help="Log signaling traffic")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> None:
    identity = PeerIdentity(args.identity) if args.identity else None
    room = Room(args.room, WebSocketBroadcastTransport(args.relay_url), identity=identity)
    connected = asyncio.Event()

    def on_status_change(status: ConnectionStatus, message: str) -> None:
        logger.info(f"[{status.value}] {message}")
        if status == ConnectionStatus.CONNECTED:
            connected.set()
        else:
            connected.clear()

    def on_chat_message(message: ChatMessage) -> None:
        logger.info(f"<{message.sender_id}> {message.text}")

    room.on_status_change = on_status_change
    room.on_chat_message = on_chat_message

    try:
        await room.join()

        if args.chat:
            await connected.wait()
            await room.send_chat(args.chat)

        # Keep the session alive until interrupted
        await asyncio.Event().wait()
    finally:
        await room.leave()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
