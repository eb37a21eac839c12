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

"""Signaling transport contract consumed by the negotiation core."""

from collections.abc import Callable
from typing import Protocol

from .envelope import SignalEnvelope

EnvelopeHandler = Callable[[SignalEnvelope], None]


class SignalingTransport(Protocol):
    """Named-channel publish/subscribe primitive keyed by room identifier.

    Delivery is best effort: envelopes may be dropped, duplicated or reordered
    relative to other senders. A single sender's envelopes arrive in send order.
    Self-published envelopes are not echoed back to the publisher.
    """

    async def subscribe(self, room_id: str, on_envelope: EnvelopeHandler) -> None:
        """Start receiving envelopes published by other participants in a room."""
        ...

    async def publish(self, envelope: SignalEnvelope) -> None:
        """Broadcast an envelope to the room. May raise on failure."""
        ...

    async def unsubscribe(self) -> None:
        """Release the subscription. Idempotent."""
        ...
