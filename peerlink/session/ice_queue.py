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

"""Buffer for remote ICE candidates that arrive before the remote description."""

import logging
from collections import deque
from collections.abc import Awaitable, Callable

from ..signaling.envelope import IceCandidatePayload

logger = logging.getLogger(__name__)


class IceCandidateQueue:
    """FIFO of candidates received while no remote description is set.

    A queue belongs to exactly one engine instance; a fresh queue is created
    whenever the engine is rebuilt.
    """

    def __init__(self) -> None:
        self._candidates: deque[IceCandidatePayload] = deque()

    def enqueue(self, candidate: IceCandidatePayload) -> None:
        self._candidates.append(candidate)
        logger.debug(f"Buffered ICE candidate ({len(self._candidates)} pending)")

    async def drain_into(
        self, add_candidate: Callable[[IceCandidatePayload], Awaitable[None]]
    ) -> int:
        """Apply buffered candidates in arrival order, emptying the queue.

        Individual failures are logged and skipped.

        Args:
            add_candidate: Coroutine function applying one candidate to the engine

        Returns:
            Number of candidates applied successfully
        """
        applied = 0
        while self._candidates:
            candidate = self._candidates.popleft()
            try:
                await add_candidate(candidate)
                applied += 1
            except Exception as e:
                logger.warning(f"Failed to add queued candidate: {e}")

        if applied:
            logger.info(f"Applied {applied} queued ICE candidate(s)")
        return applied

    def __len__(self) -> int:
        return len(self._candidates)

    def __bool__(self) -> bool:
        return bool(self._candidates)
