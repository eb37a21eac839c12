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

"""Connection engine adapter over aiortc's RTCPeerConnection.

The negotiation core only drives the engine's public control surface:
descriptions, candidates, tracks and state observation. `PeerEngine` maps
that surface onto aiortc and translates session descriptions and candidates
to and from the signaling payload types.
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCDataChannel,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..signaling.envelope import IceCandidatePayload, SessionDescriptionPayload

logger = logging.getLogger(__name__)

StateCallback = Callable[[str, str], None]
CandidateCallback = Callable[[IceCandidatePayload], None]
TrackCallback = Callable[[MediaStreamTrack], None]

# State categories reported through `on_state_change`
CONNECTION = "connection"
SIGNALING = "signaling"
ICE_CONNECTION = "ice-connection"
ICE_GATHERING = "ice-gathering"


class ConnectionEngine(Protocol):
    """Control surface consumed by the negotiation coordinator."""

    on_state_change: StateCallback | None
    on_local_candidate: CandidateCallback | None
    on_remote_track: TrackCallback | None

    @property
    def connection_state(self) -> str: ...

    @property
    def signaling_state(self) -> str: ...

    @property
    def ice_connection_state(self) -> str: ...

    @property
    def ice_gathering_state(self) -> str: ...

    @property
    def has_remote_description(self) -> bool: ...

    def ensure_data_channel(self, label: str) -> None: ...

    async def create_offer(self) -> SessionDescriptionPayload: ...

    async def create_answer(self) -> SessionDescriptionPayload: ...

    async def set_remote_description(self, description: SessionDescriptionPayload) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidatePayload) -> None: ...

    def add_track(self, track: MediaStreamTrack) -> None: ...

    def replace_track(self, track: MediaStreamTrack) -> None: ...

    async def close(self) -> None: ...


EngineFactory = Callable[[list[dict[str, Any]]], ConnectionEngine]


def build_ice_servers(ice_servers: list[dict[str, Any]]) -> list[RTCIceServer]:
    """Convert ICE server dicts (`urls`, optional `username`/`credential`)."""
    return [
        RTCIceServer(urls=server["urls"])
        if "username" not in server
        else RTCIceServer(
            urls=server["urls"],
            username=server.get("username", ""),
            credential=server.get("credential", ""),
        )
        for server in ice_servers
    ]


class PeerEngine:
    """aiortc-backed connection engine.

    One instance wraps one RTCPeerConnection for its whole life; recovery
    replaces the instance rather than reusing it.
    """

    def __init__(self, ice_servers: list[dict[str, Any]]) -> None:
        """Create the underlying RTCPeerConnection.

        Args:
            ice_servers: ICE servers configuration (STUN/TURN)
        """
        config = RTCConfiguration(iceServers=build_ice_servers(ice_servers))
        self.pc: RTCPeerConnection = RTCPeerConnection(configuration=config)
        self.data_channel: RTCDataChannel | None = None

        # Callbacks
        self.on_state_change: StateCallback | None = None
        self.on_local_candidate: CandidateCallback | None = None
        self.on_remote_track: TrackCallback | None = None

        @self.pc.on("connectionstatechange")
        def on_connectionstatechange() -> None:
            logger.info(f"Connection state: {self.pc.connectionState}")
            self._notify(CONNECTION, self.pc.connectionState)

        @self.pc.on("signalingstatechange")
        def on_signalingstatechange() -> None:
            logger.debug(f"Signaling state: {self.pc.signalingState}")
            self._notify(SIGNALING, self.pc.signalingState)

        @self.pc.on("iceconnectionstatechange")
        def on_iceconnectionstatechange() -> None:
            logger.debug(f"ICE connection state: {self.pc.iceConnectionState}")
            self._notify(ICE_CONNECTION, self.pc.iceConnectionState)

        @self.pc.on("icegatheringstatechange")
        def on_icegatheringstatechange() -> None:
            logger.debug(f"ICE gathering state: {self.pc.iceGatheringState}")
            self._notify(ICE_GATHERING, self.pc.iceGatheringState)

        @self.pc.on("icecandidate")
        def on_icecandidate(candidate: RTCIceCandidate | None) -> None:
            # aiortc embeds gathered candidates in the SDP; trickled ones are forwarded
            if candidate is None or self.on_local_candidate is None:
                return
            self.on_local_candidate(
                IceCandidatePayload(
                    candidate=f"candidate:{candidate_to_sdp(candidate)}",
                    sdp_mid=candidate.sdpMid,
                    sdp_mline_index=candidate.sdpMLineIndex,
                )
            )

        @self.pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            logger.info(f"Track received: {track.kind}")
            if self.on_remote_track:
                self.on_remote_track(track)

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState

    @property
    def signaling_state(self) -> str:
        return self.pc.signalingState

    @property
    def ice_connection_state(self) -> str:
        return self.pc.iceConnectionState

    @property
    def ice_gathering_state(self) -> str:
        return self.pc.iceGatheringState

    @property
    def has_remote_description(self) -> bool:
        return self.pc.remoteDescription is not None

    def ensure_data_channel(self, label: str) -> None:
        """Create the session's data channel once per engine.

        Args:
            label: DataChannel label
        """
        if self.data_channel is not None:
            return

        channel = self.pc.createDataChannel(label)
        self.data_channel = channel

        @channel.on("open")
        def on_open() -> None:
            logger.info(f"DataChannel '{channel.label}' opened")

        @channel.on("close")
        def on_close() -> None:
            logger.info(f"DataChannel '{channel.label}' closed")

    async def create_offer(self) -> SessionDescriptionPayload:
        """Create an SDP offer requesting audio and video and set it locally.

        Returns:
            Local offer
        """
        kinds = {transceiver.kind for transceiver in self.pc.getTransceivers()}
        for kind in ("audio", "video"):
            if kind not in kinds:
                self.pc.addTransceiver(kind, direction="recvonly")

        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)

        local = self.pc.localDescription
        logger.info("Created SDP offer")
        return SessionDescriptionPayload(type="offer", sdp=local.sdp)

    async def create_answer(self) -> SessionDescriptionPayload:
        """Create an SDP answer for the applied remote offer and set it locally.

        Returns:
            Local answer
        """
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)

        local = self.pc.localDescription
        logger.info("Created SDP answer")
        return SessionDescriptionPayload(type="answer", sdp=local.sdp)

    async def set_remote_description(self, description: SessionDescriptionPayload) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        logger.info(f"Set remote description: {description.type}")

    async def add_ice_candidate(self, candidate: IceCandidatePayload) -> None:
        """Add a remote ICE candidate.

        Args:
            candidate: Candidate with browser-style `candidate:` SDP line

        Raises:
            ValueError: If the candidate line cannot be parsed
        """
        line = candidate.candidate
        if line.startswith("candidate:"):
            line = line.split(":", 1)[1]

        try:
            rtc_candidate = candidate_from_sdp(line)
        except (AssertionError, IndexError, ValueError) as e:
            raise ValueError(f"Malformed ICE candidate: {candidate.candidate!r}") from e

        rtc_candidate.sdpMid = candidate.sdp_mid
        rtc_candidate.sdpMLineIndex = candidate.sdp_mline_index

        await self.pc.addIceCandidate(rtc_candidate)
        logger.debug("Added ICE candidate")

    def add_track(self, track: MediaStreamTrack) -> None:
        self.pc.addTrack(track)

    def replace_track(self, track: MediaStreamTrack) -> None:
        """Swap the outgoing track of the same kind, or add it if none is sent."""
        for sender in self.pc.getSenders():
            if sender.track is not None and sender.track.kind == track.kind:
                sender.replaceTrack(track)
                logger.info(f"Replaced outgoing {track.kind} track")
                return

        self.pc.addTrack(track)
        logger.info(f"Added outgoing {track.kind} track")

    async def close(self) -> None:
        # Detach callbacks first so close-time state changes are not reported
        self.on_state_change = None
        self.on_local_candidate = None
        self.on_remote_track = None

        if self.data_channel:
            self.data_channel.close()
            self.data_channel = None

        await self.pc.close()

    def _notify(self, category: str, value: str) -> None:
        if self.on_state_change:
            self.on_state_change(category, value)


def create_engine(ice_servers: list[dict[str, Any]]) -> ConnectionEngine:
    """Default engine factory."""
    return PeerEngine(ice_servers)
