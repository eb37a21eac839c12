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

"""In-process broadcast relay.

Rooms live in a single `LocalBroadcastHub`; each participant gets its own
`LocalBroadcastTransport`. Delivery is scheduled on the running event loop so
publishers never re-enter subscriber callbacks. The hub can drop or duplicate
envelopes to exercise the negotiation core against a lossy relay.
"""

import asyncio
import logging

from .envelope import SignalEnvelope
from .transport import EnvelopeHandler

logger = logging.getLogger(__name__)


class LocalBroadcastHub:
    """Manages all in-process rooms."""

    def __init__(self) -> None:
        self._rooms: dict[str, list["LocalBroadcastTransport"]] = {}

        # Fault injection
        self.drop_next: int = 0
        self.duplicate: bool = False

        # Every envelope accepted for broadcast, in publish order
        self.published: list[tuple[str, SignalEnvelope]] = []

    def transport(self) -> "LocalBroadcastTransport":
        """Create a transport bound to this hub."""
        return LocalBroadcastTransport(self)

    def subscriber_count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, []))

    def _join(self, room_id: str, transport: "LocalBroadcastTransport") -> None:
        self._rooms.setdefault(room_id, []).append(transport)
        logger.info(f"Room {room_id}: participant joined ({self.subscriber_count(room_id)} total)")

    def _leave(self, room_id: str, transport: "LocalBroadcastTransport") -> None:
        members = self._rooms.get(room_id, [])
        if transport in members:
            members.remove(transport)
            logger.info(f"Room {room_id}: participant left ({len(members)} remaining)")
        if not members:
            self._rooms.pop(room_id, None)

    def _broadcast(
        self, room_id: str, sender: "LocalBroadcastTransport", envelope: SignalEnvelope
    ) -> None:
        self.published.append((room_id, envelope))

        if self.drop_next > 0:
            self.drop_next -= 1
            logger.debug(f"Room {room_id}: dropped {envelope.type.value}")
            return

        copies = 2 if self.duplicate else 1
        loop = asyncio.get_running_loop()
        for member in list(self._rooms.get(room_id, [])):
            if member is sender:
                continue
            for _ in range(copies):
                loop.call_soon(member._deliver, envelope)


class LocalBroadcastTransport:
    """One participant's subscription to a `LocalBroadcastHub` room."""

    def __init__(self, hub: LocalBroadcastHub) -> None:
        self.hub = hub
        self.room_id: str | None = None
        self._on_envelope: EnvelopeHandler | None = None

    async def subscribe(self, room_id: str, on_envelope: EnvelopeHandler) -> None:
        if self.room_id is not None:
            raise RuntimeError(f"Already subscribed to room {self.room_id}")

        self.room_id = room_id
        self._on_envelope = on_envelope
        self.hub._join(room_id, self)

    async def publish(self, envelope: SignalEnvelope) -> None:
        if self.room_id is None:
            raise RuntimeError("Not subscribed")

        self.hub._broadcast(self.room_id, self, envelope)

    async def unsubscribe(self) -> None:
        if self.room_id is None:
            return

        self.hub._leave(self.room_id, self)
        self.room_id = None
        self._on_envelope = None

    def _deliver(self, envelope: SignalEnvelope) -> None:
        # Envelopes already scheduled when unsubscribing are discarded
        if self._on_envelope is not None:
            self._on_envelope(envelope)
