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

"""Signal envelopes exchanged over the broadcast relay.

Every message published to a room is a single JSON object:

    {"type": "offer", "senderId": "k3v9x2", "sdp": {"type": "offer", "sdp": "v=0..."}}

`type` selects which optional field is present: `sdp` for offers and answers,
`candidate` for trickled ICE candidates and `chatMessage` for chat. Field names
on the wire are camelCase; the Python attributes are snake_case.
"""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class EnvelopeError(ValueError):
    """Raised when an inbound frame is not a valid signal envelope."""


class SignalType(str, Enum):
    """Signal envelope types."""

    ANNOUNCE = "announce"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    LEAVE = "leave"
    CHAT = "chat"


class SessionDescriptionPayload(BaseModel):
    """SDP offer or answer."""

    type: Literal["offer", "answer"]
    sdp: str


class IceCandidatePayload(BaseModel):
    """Trickled ICE candidate."""

    model_config = ConfigDict(populate_by_name=True)

    candidate: str = Field(description="Candidate line in SDP attribute form")
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_mline_index: int | None = Field(default=None, alias="sdpMLineIndex")


class ChatMessage(BaseModel):
    """Chat message carried alongside signaling traffic."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    sender_id: str = Field(alias="senderId")
    timestamp: int = Field(description="Milliseconds since the epoch")
    is_system: bool = Field(default=False, alias="isSystem")


class SignalEnvelope(BaseModel):
    """Envelope published to every other participant in a room."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: SignalType
    sender_id: str = Field(alias="senderId", min_length=1)
    sdp: SessionDescriptionPayload | None = None
    candidate: IceCandidatePayload | None = None
    chat_message: ChatMessage | None = Field(default=None, alias="chatMessage")

    @model_validator(mode="after")
    def _check_payload(self) -> "SignalEnvelope":
        if self.type in (SignalType.OFFER, SignalType.ANSWER):
            if self.sdp is None:
                raise ValueError(f"{self.type.value} envelope requires sdp")
            if self.sdp.type != self.type.value:
                raise ValueError(
                    f"{self.type.value} envelope carries a {self.sdp.type} description"
                )
        if self.type == SignalType.CHAT and self.chat_message is None:
            raise ValueError("chat envelope requires chatMessage")
        return self

    @classmethod
    def announce(cls, sender_id: str) -> "SignalEnvelope":
        return cls(type=SignalType.ANNOUNCE, sender_id=sender_id)

    @classmethod
    def offer(cls, sender_id: str, sdp: SessionDescriptionPayload) -> "SignalEnvelope":
        return cls(type=SignalType.OFFER, sender_id=sender_id, sdp=sdp)

    @classmethod
    def answer(cls, sender_id: str, sdp: SessionDescriptionPayload) -> "SignalEnvelope":
        return cls(type=SignalType.ANSWER, sender_id=sender_id, sdp=sdp)

    @classmethod
    def ice_candidate(
        cls, sender_id: str, candidate: IceCandidatePayload
    ) -> "SignalEnvelope":
        return cls(type=SignalType.ICE_CANDIDATE, sender_id=sender_id, candidate=candidate)

    @classmethod
    def leave(cls, sender_id: str) -> "SignalEnvelope":
        return cls(type=SignalType.LEAVE, sender_id=sender_id)

    @classmethod
    def chat(cls, message: ChatMessage) -> "SignalEnvelope":
        return cls(type=SignalType.CHAT, sender_id=message.sender_id, chat_message=message)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape, omitting absent fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any] | str | bytes) -> "SignalEnvelope":
        """Parse a wire frame.

        Args:
            data: Decoded JSON object, or raw JSON text

        Returns:
            Parsed SignalEnvelope

        Raises:
            EnvelopeError: If the frame is not valid JSON or not a valid envelope
        """
        try:
            if isinstance(data, (str, bytes)):
                data = json.loads(data)
            return cls.model_validate(data)
        except (ValidationError, ValueError) as e:
            raise EnvelopeError(f"Invalid signal envelope: {e}") from e
