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

"""Events consumed by the negotiation coordinator's event loop.

Engine events carry the generation of the engine instance that produced them.
"""

from dataclasses import dataclass
from typing import Any

from ..signaling.envelope import IceCandidatePayload, SignalEnvelope


@dataclass(frozen=True)
class EnvelopeReceived:
    envelope: SignalEnvelope


@dataclass(frozen=True)
class EngineStateChanged:
    generation: int
    category: str
    value: str


@dataclass(frozen=True)
class LocalCandidateGathered:
    generation: int
    candidate: IceCandidatePayload


@dataclass(frozen=True)
class RemoteTrackReceived:
    generation: int
    track: Any


@dataclass(frozen=True)
class NegotiationTimedOut:
    generation: int


@dataclass(frozen=True)
class RestartRequested:
    reason: str
    generation: int | None = None  # None restarts whatever engine is current


CoordinatorEvent = (
    EnvelopeReceived
    | EngineStateChanged
    | LocalCandidateGathered
    | RemoteTrackReceived
    | NegotiationTimedOut
    | RestartRequested
)
