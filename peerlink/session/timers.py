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

"""Single-shot cancellable timer bound to the running event loop."""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class SingleShotTimer:
    """Owned deadline that fires a callback once.

    Arming the timer always cancels the previous deadline first, so at most
    one instance of a given timer is ever pending.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handle: asyncio.TimerHandle | None = None

    def arm(self, delay: float, callback: Callable[[], None]) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire, callback)
        logger.debug(f"Timer '{self.name}' armed for {delay}s")

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug(f"Timer '{self.name}' cancelled")

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def _fire(self, callback: Callable[[], None]) -> None:
        self._handle = None
        callback()
