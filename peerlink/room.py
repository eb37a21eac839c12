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

"""
Room lifecycle for a two-party PeerLink session.

Joins a relay room, runs the negotiation coordinator, and guarantees that
leaving the room (normally, on error, or mid-negotiation):
- sends a best-effort leave notice
- unsubscribes from the relay
- stops all timers and closes the connection engine
- stops locally captured media
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .core.config import Settings
from .core.config import settings as default_settings
from .session.coordinator import NegotiationCoordinator
from .session.engine import EngineFactory, create_engine
from .session.identity import PeerIdentity
from .session.state import ConnectionStatus
from .signaling.envelope import ChatMessage
from .signaling.transport import SignalingTransport

logger = logging.getLogger(__name__)


class Room:
    """One participant's membership in a relay room."""

    def __init__(
        self,
        room_id: str,
        transport: SignalingTransport,
        settings: Settings | None = None,
        engine_factory: EngineFactory = create_engine,
        identity: PeerIdentity | None = None,
        local_tracks: list[Any] | None = None,
    ) -> None:
        """Initialize the room.

        Args:
            room_id: Room identifier shared by both participants
            transport: Relay transport (not yet subscribed)
            settings: Timing and ICE configuration
            engine_factory: Builds a connection engine from an ICE server list
            identity: Session identity, generated when omitted
            local_tracks: Locally captured media tracks (may be empty)
        """
        if not room_id.strip():
            raise ValueError("Room id cannot be empty")

        self.room_id = room_id
        self.transport = transport
        self.identity = identity or PeerIdentity.generate()
        self.coordinator = NegotiationCoordinator(
            self.identity,
            transport,
            settings=settings or default_settings,
            engine_factory=engine_factory,
            local_tracks=local_tracks,
        )
        self.joined: bool = False
        self._status_lock = asyncio.Lock()

        # Callbacks
        self.on_status_change: Callable[[ConnectionStatus, str], None] | None = None
        self.on_chat_message: Callable[[ChatMessage], None] | None = None
        self.on_remote_track: Callable[[Any | None], None] | None = None

        self.coordinator.on_status_change = self._forward_status
        self.coordinator.on_chat_message = self._forward_chat
        self.coordinator.on_remote_track = self._forward_remote_track

    async def join(self) -> None:
        """Subscribe to the room relay and start looking for the peer.

        Does nothing if already joined.
        """
        async with self._status_lock:
            if self.joined:
                logger.info(f"Already in room {self.room_id}")
                return

            logger.info(f"Joining room {self.room_id} as {self.identity}")
            try:
                await self.transport.subscribe(self.room_id, self.coordinator.deliver)
            except Exception as e:
                logger.error(f"Failed to subscribe to room {self.room_id}: {e}")
                raise

            try:
                await self.coordinator.start()
            except Exception:
                await self.transport.unsubscribe()
                raise

            self.joined = True
            logger.info(f"✓ Joined room {self.room_id}")

    async def leave(self) -> None:
        """Leave the room. Every teardown step runs even if an earlier one fails."""
        async with self._status_lock:
            if not self.joined:
                logger.info(f"Not in room {self.room_id}")
                return

            logger.info(f"Leaving room {self.room_id}...")
            try:
                await self.coordinator.stop()
            finally:
                try:
                    await self.transport.unsubscribe()
                except Exception as e:
                    logger.warning(f"Error unsubscribing from room relay: {e}")
                finally:
                    self._stop_local_tracks()
                    self.joined = False
                    logger.info(f"✓ Left room {self.room_id}")

    async def send_chat(self, text: str) -> ChatMessage:
        """Send a chat message to the peer.

        Raises:
            RuntimeError: If the room has not been joined
            ValueError: If the message is empty
        """
        if not self.joined:
            raise RuntimeError("Room not joined")
        return await self.coordinator.send_chat(text)

    def replace_local_track(self, track: Any) -> None:
        """Send `track` instead of the current local track of the same kind."""
        self.coordinator.replace_local_track(track)

    @property
    def chat_messages(self) -> list[ChatMessage]:
        return list(self.coordinator.chat_messages)

    def get_status(self) -> dict[str, Any]:
        """Get current room status.

        Returns:
            Status dictionary with connection status, message, phase and engine diagnostics
        """
        session = self.coordinator.session
        return {
            "room_id": self.room_id,
            "identity": self.identity.value,
            "joined": self.joined,
            "status": session.status.value,
            "message": session.status_message,
            "phase": session.phase.value,
            "peer_connected": session.peer_connected,
            "peer_id": session.peer_id,
            "ice": session.diagnostics["ice"],
            "signaling": session.diagnostics["signaling"],
            "gathering": session.diagnostics["gathering"],
        }

    def is_connected(self) -> bool:
        return self.coordinator.session.status == ConnectionStatus.CONNECTED

    def _stop_local_tracks(self) -> None:
        for track in self.coordinator.session.local_tracks:
            try:
                track.stop()
            except Exception as e:
                logger.warning(f"Error stopping local track: {e}")

    def _forward_status(self, status: ConnectionStatus, message: str) -> None:
        if self.on_status_change:
            self.on_status_change(status, message)

    def _forward_chat(self, message: ChatMessage) -> None:
        if self.on_chat_message:
            self.on_chat_message(message)

    def _forward_remote_track(self, track: Any | None) -> None:
        if self.on_remote_track:
            self.on_remote_track(track)
