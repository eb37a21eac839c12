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

"""Teardown and rebuild of the connection engine after failures."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .announcer import AnnouncementScheduler
from .engine import ConnectionEngine, EngineFactory
from .ice_queue import IceCandidateQueue
from .state import ConnectionStatus, NegotiationPhase, NegotiationSession
from .timers import SingleShotTimer

logger = logging.getLogger(__name__)


class ReconnectionManager:
    """Replaces the session's engine and restarts peer discovery.

    Restarts are serialized: concurrent calls run one after the other and
    every rebuild closes the previous engine before creating the next, so at
    most one engine instance is ever alive.
    """

    def __init__(
        self,
        session: NegotiationSession,
        engine_factory: EngineFactory,
        ice_servers: list[dict[str, Any]],
        announcer: AnnouncementScheduler,
        timers: list[SingleShotTimer],
        attach_engine: Callable[[ConnectionEngine, int], None],
        set_status: Callable[[ConnectionStatus, str], None],
        clear_remote_media: Callable[[], None],
    ) -> None:
        self.session = session
        self.engine_factory = engine_factory
        self.ice_servers = ice_servers
        self.announcer = announcer
        self.timers = timers
        self._attach_engine = attach_engine
        self._set_status = set_status
        self._clear_remote_media = clear_remote_media
        self._lock = asyncio.Lock()
        self.restart_count: int = 0

    async def rebuild_engine(self) -> ConnectionEngine:
        """Close the current engine and install a fresh one.

        Returns:
            The new engine
        """
        async with self._lock:
            return await self._rebuild()

    async def restart(self, reason: str, message: str = "Retrying connection...") -> None:
        """Full restart: new engine, status reset, announcements resumed.

        Args:
            reason: Why the restart was requested (logged)
            message: Status message shown while waiting for the peer
        """
        async with self._lock:
            if self.session.closed:
                logger.debug(f"Ignoring restart after close ({reason})")
                return

            logger.info(f"Restarting connection: {reason}")
            self._set_status(ConnectionStatus.RECONNECTING, "Reconnecting...")

            for timer in self.timers:
                timer.cancel()
            self.announcer.stop()

            await self._rebuild()
            self._clear_remote_media()

            self.session.transition(NegotiationPhase.WAITING)
            self._set_status(ConnectionStatus.WAITING_FOR_PEER, message)
            self.announcer.start()
            self.restart_count += 1

    async def close(self) -> None:
        """Stop all timers and close the engine for good."""
        async with self._lock:
            for timer in self.timers:
                timer.cancel()
            self.announcer.stop()
            await self._close_engine()
            self.session.ice_queue = IceCandidateQueue()

    async def _rebuild(self) -> ConnectionEngine:
        await self._close_engine()

        self.session.generation += 1
        self.session.ice_queue = IceCandidateQueue()
        self.session.remote_offer_sdp = None

        engine = self.engine_factory(self.ice_servers)
        self._attach_engine(engine, self.session.generation)
        self.session.engine = engine
        logger.info(f"Created connection engine (generation {self.session.generation})")

        # Re-attach local media; a session without tracks is still valid
        for track in self.session.local_tracks:
            try:
                engine.add_track(track)
            except Exception as e:
                logger.warning(f"Error adding local {getattr(track, 'kind', '?')} track: {e}")

        return engine

    async def _close_engine(self) -> None:
        engine = self.session.engine
        if engine is None:
            return

        self.session.engine = None
        try:
            await engine.close()
        except Exception as e:
            logger.warning(f"Error closing connection engine: {e}")
