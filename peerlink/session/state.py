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

"""Session state: observable status, negotiation phase and owned resources."""

import logging
from enum import Enum
from typing import Any

from .engine import ConnectionEngine
from .ice_queue import IceCandidateQueue

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """User-visible connection status. Informational only."""

    INITIALIZING = "initializing"
    WAITING_FOR_PEER = "waiting_for_peer"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


class NegotiationPhase(str, Enum):
    """Where the session is in the offer/answer exchange."""

    IDLE = "idle"
    WAITING = "waiting"
    OFFERING = "offering"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


TRANSITIONS: dict[NegotiationPhase, frozenset[NegotiationPhase]] = {
    NegotiationPhase.IDLE: frozenset({NegotiationPhase.WAITING, NegotiationPhase.CLOSED}),
    NegotiationPhase.WAITING: frozenset(
        {
            NegotiationPhase.WAITING,
            NegotiationPhase.OFFERING,
            NegotiationPhase.CONNECTING,
            NegotiationPhase.CLOSED,
        }
    ),
    NegotiationPhase.OFFERING: frozenset(
        {
            NegotiationPhase.WAITING,
            NegotiationPhase.OFFERING,
            NegotiationPhase.CONNECTING,
            NegotiationPhase.CLOSED,
        }
    ),
    NegotiationPhase.CONNECTING: frozenset(
        {
            NegotiationPhase.WAITING,
            NegotiationPhase.OFFERING,
            NegotiationPhase.CONNECTING,
            NegotiationPhase.CONNECTED,
            NegotiationPhase.CLOSED,
        }
    ),
    NegotiationPhase.CONNECTED: frozenset(
        {
            NegotiationPhase.WAITING,
            NegotiationPhase.OFFERING,
            NegotiationPhase.CONNECTING,
            NegotiationPhase.CLOSED,
        }
    ),
    NegotiationPhase.CLOSED: frozenset(),
}


class IllegalTransitionError(RuntimeError):
    """Raised when a phase change is not in the transition table."""

    def __init__(self, current: NegotiationPhase, target: NegotiationPhase) -> None:
        super().__init__(f"Illegal negotiation transition: {current.value} → {target.value}")
        self.current = current
        self.target = target


class NegotiationSession:
    """All mutable state of one room session.

    Owned by the coordinator and the reconnection manager. The engine and the
    ICE queue are replaced together on every rebuild; `generation` counts
    rebuilds so events from a previous engine can be recognised and dropped.
    """

    def __init__(self, local_tracks: list[Any] | None = None) -> None:
        self.engine: ConnectionEngine | None = None
        self.ice_queue: IceCandidateQueue = IceCandidateQueue()
        self.generation: int = 0

        self.phase: NegotiationPhase = NegotiationPhase.IDLE
        self.status: ConnectionStatus = ConnectionStatus.INITIALIZING
        self.status_message: str = "Setting up room..."

        # Latest engine-reported states, for diagnostics only
        self.diagnostics: dict[str, str] = {
            "ice": "new",
            "signaling": "stable",
            "gathering": "new",
        }

        self.local_tracks: list[Any] = list(local_tracks or [])
        self.remote_tracks: list[Any] = []
        self.peer_connected: bool = False
        self.peer_id: str | None = None

        # SDP of the remote offer applied to the current engine (duplicate guard)
        self.remote_offer_sdp: str | None = None

    def can_transition(self, target: NegotiationPhase) -> bool:
        return target in TRANSITIONS[self.phase]

    def transition(self, target: NegotiationPhase) -> None:
        """Move to `target`.

        Raises:
            IllegalTransitionError: If the transition table forbids the change
        """
        if not self.can_transition(target):
            raise IllegalTransitionError(self.phase, target)

        if self.phase != target:
            logger.debug(f"Negotiation phase: {self.phase.value} → {target.value}")
        self.phase = target

    @property
    def closed(self) -> bool:
        return self.phase == NegotiationPhase.CLOSED
