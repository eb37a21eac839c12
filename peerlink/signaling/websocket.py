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

"""WebSocket transport for a broadcast room relay.

Connects to `{relay_url}/rooms/{room_id}` and exchanges signal envelopes as
JSON text frames. The relay fans each frame out to the other participants in
the room; it gives no delivery or ordering guarantees across senders.
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

import aiohttp

from .envelope import EnvelopeError, SignalEnvelope
from .transport import EnvelopeHandler

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    """Relay subscription states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    FAILED = "failed"
    CLOSED = "closed"


class WebSocketBroadcastTransport:
    """Room subscription over an aiohttp WebSocket."""

    def __init__(self, relay_url: str = "ws://localhost:8001") -> None:
        """Initialize the transport.

        Args:
            relay_url: Base URL of the broadcast relay (e.g., ws://localhost:8001)
        """
        self.relay_url: str = relay_url.rstrip("/")
        self.room_id: str | None = None

        # WebSocket connection
        self.ws: aiohttp.ClientWebSocketResponse | None = None
        self.ws_session: aiohttp.ClientSession | None = None
        self._receive_task: asyncio.Task[None] | None = None

        self.state: TransportState = TransportState.DISCONNECTED
        self._on_envelope: EnvelopeHandler | None = None

        # Callbacks
        self.on_state_change: Callable[[TransportState], None] | None = None

    async def subscribe(self, room_id: str, on_envelope: EnvelopeHandler) -> None:
        """Connect to the relay and start receiving room envelopes.

        Args:
            room_id: Room identifier
            on_envelope: Called for each envelope published by other participants

        Raises:
            RuntimeError: If already subscribed
            aiohttp.ClientError: If the relay cannot be reached
        """
        if self.room_id is not None:
            raise RuntimeError(f"Already subscribed to room {self.room_id}")

        self.room_id = room_id
        self._on_envelope = on_envelope
        self._set_state(TransportState.CONNECTING)

        # Close old session if exists
        if self.ws_session and not self.ws_session.closed:
            await self.ws_session.close()

        self.ws_session = aiohttp.ClientSession()
        ws_url = f"{self.relay_url}/rooms/{room_id}"

        try:
            self.ws = await self.ws_session.ws_connect(ws_url)
            logger.info(f"Subscribed to room relay: {ws_url}")
            self._set_state(TransportState.SUBSCRIBED)

            # Start message handling loop
            self._receive_task = asyncio.create_task(self._handle_messages())

        except Exception as e:
            logger.error(f"Failed to connect to room relay: {e}")
            self._set_state(TransportState.FAILED)
            await self._close_connection()
            self.room_id = None
            self._on_envelope = None
            raise

    async def publish(self, envelope: SignalEnvelope) -> None:
        """Send an envelope to the room.

        Raises:
            RuntimeError: If WebSocket is not connected
        """
        if self.ws is None or self.ws.closed:
            raise RuntimeError("WebSocket not connected")

        await self.ws.send_json(envelope.to_wire())
        logger.debug(f"Published {envelope.type.value} to room {self.room_id}")

    async def unsubscribe(self) -> None:
        """Close the relay connection. Idempotent."""
        if self._receive_task is not None and not self._receive_task.done():
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
        self._receive_task = None

        await self._close_connection()

        if self.room_id is not None:
            logger.info(f"Unsubscribed from room {self.room_id}")
        self.room_id = None
        self._on_envelope = None
        self._set_state(TransportState.DISCONNECTED)

    async def _close_connection(self) -> None:
        # Close WebSocket
        if self.ws and not self.ws.closed:
            try:
                await self.ws.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {e}")
        self.ws = None

        # Close session
        if self.ws_session and not self.ws_session.closed:
            try:
                await self.ws_session.close()
            except Exception as e:
                logger.warning(f"Error closing session: {e}")
        self.ws_session = None

    async def _handle_messages(self) -> None:
        """Handle incoming WebSocket messages (JSON envelopes)."""
        if self.ws is None:
            return

        try:
            async for msg in self.ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.CLOSED:
                    logger.info("Relay WebSocket closed by server")
                    self._set_state(TransportState.CLOSED)
                    return
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"Relay WebSocket error: {msg.data}")
                    self._set_state(TransportState.FAILED)
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error handling relay messages: {e!r}")
            self._set_state(TransportState.FAILED)

    def _dispatch_frame(self, data: str) -> None:
        try:
            envelope = SignalEnvelope.from_wire(data)
        except EnvelopeError as e:
            logger.warning(f"Dropping malformed relay frame: {e}")
            return

        if self._on_envelope:
            self._on_envelope(envelope)

    def _set_state(self, state: TransportState) -> None:
        """Update subscription state and notify callback.

        Args:
            state: New transport state
        """
        if self.state != state:
            old_state = self.state
            self.state = state
            logger.info(f"Relay transport state change: {old_state.value} → {state.value}")

            if self.on_state_change:
                self.on_state_change(state)
