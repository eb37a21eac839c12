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

"""Example: two rooms negotiating inside one process.

Both participants share an in-process broadcast hub, elect an initiator,
exchange offer and answer, and connect over a real aiortc peer connection.
"""

import asyncio
import logging

from peerlink.core.config import Settings
from peerlink.room import Room
from peerlink.session.identity import PeerIdentity
from peerlink.session.state import ConnectionStatus
from peerlink.signaling.local import LocalBroadcastHub

# Configure logging
logging.basicConfig(level=logging.INFO)


async def main() -> None:
    """Run two local participants until they connect."""
    hub = LocalBroadcastHub()
    config = Settings(ice_servers=[])  # Host candidates only

    alice = Room("demo-room", hub.transport(), settings=config, identity=PeerIdentity("b1"))
    bob = Room("demo-room", hub.transport(), settings=config, identity=PeerIdentity("a9"))

    def on_status_change(name: str):
        def handler(status: ConnectionStatus, message: str) -> None:
            print(f"{name}: {status.value} ({message})")

        return handler

    alice.on_status_change = on_status_change("alice")
    bob.on_status_change = on_status_change("bob")

    try:
        await alice.join()
        await bob.join()

        # Wait for connection to establish
        for _ in range(30):
            if alice.is_connected() and bob.is_connected():
                break
            await asyncio.sleep(1)

        print(f"alice: {alice.get_status()}")
        print(f"bob: {bob.get_status()}")

        if alice.is_connected():
            await alice.send_chat("Hello from alice!")
            await asyncio.sleep(0.5)
            print(f"bob received: {[m.text for m in bob.chat_messages]}")

    finally:
        print("Leaving...")
        await alice.leave()
        await bob.leave()
        print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
