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

"""Periodic presence announcements used for peer discovery."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class AnnouncementScheduler:
    """Broadcasts presence until a peer connection is established.

    After `initial_delay` and then every `interval` seconds the scheduler
    checks whether the engine is connected. If it is, the loop ends on its
    own; otherwise one announcement is sent. Leaving it running after other
    cancellation points is therefore harmless.
    """

    def __init__(
        self,
        announce: Callable[[], Awaitable[None]],
        is_connected: Callable[[], bool],
        initial_delay: float = 0.5,
        interval: float = 2.0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            announce: Coroutine function publishing one announcement
            is_connected: Returns True once the current engine is connected
            initial_delay: Seconds before the first announcement
            interval: Seconds between announcements
        """
        self._announce = announce
        self._is_connected = is_connected
        self.initial_delay = initial_delay
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self.announcements_sent: int = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """(Re)start the announcement loop, replacing any running loop."""
        self.stop()
        self._task = asyncio.create_task(self._run())
        logger.info("Broadcasting presence...")

    def stop(self) -> None:
        """Stop announcing. Safe to call when already stopped."""
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            logger.debug("Announcement loop stopped")
        self._task = None

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            if self._is_connected():
                logger.info("Peer connected, presence announcements ended")
                if self._task is asyncio.current_task():
                    self._task = None
                return

            await self._announce()
            self.announcements_sent += 1
            await asyncio.sleep(self.interval)
