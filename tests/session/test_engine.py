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

"""Tests for the aiortc connection engine."""

from unittest.mock import Mock

import pytest
from aiortc import RTCPeerConnection
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from peerlink.session.engine import SIGNALING, PeerEngine, build_ice_servers, create_engine
from peerlink.signaling.envelope import IceCandidatePayload


class TestBuildIceServers:
    """Tests for ICE server conversion."""

    def test_stun_and_turn(self) -> None:
        """Test plain STUN entries and TURN entries with credentials."""
        servers = build_ice_servers(
            [
                {"urls": "stun:stun.l.google.com:19302"},
                {"urls": "turn:turn.example.com", "username": "user", "credential": "secret"},
            ]
        )

        assert servers[0].urls == "stun:stun.l.google.com:19302"
        assert servers[0].username is None
        assert servers[1].username == "user"
        assert servers[1].credential == "secret"


class TestPeerEngine:
    """Tests for PeerEngine."""

    @pytest.mark.asyncio
    async def test_initial_state(self) -> None:
        """Test a new engine wraps a fresh peer connection."""
        engine = create_engine([])

        assert isinstance(engine.pc, RTCPeerConnection)
        assert engine.signaling_state == "stable"
        assert engine.connection_state == "new"
        assert not engine.has_remote_description

        await engine.close()

    @pytest.mark.asyncio
    async def test_data_channel_created_once(self) -> None:
        """Test the data channel is created only once per engine."""
        engine = PeerEngine([])

        engine.ensure_data_channel("keepalive")
        channel = engine.data_channel
        engine.ensure_data_channel("keepalive")

        assert channel is not None
        assert channel.label == "keepalive"
        assert engine.data_channel is channel

        await engine.close()
        assert engine.data_channel is None

    @pytest.mark.asyncio
    async def test_offer_answer_exchange(self) -> None:
        """Test a full offer/answer exchange between two engines."""
        offerer, answerer = PeerEngine([]), PeerEngine([])
        offerer.on_state_change = Mock()

        offerer.ensure_data_channel("keepalive")
        offer = await offerer.create_offer()

        assert offer.type == "offer"
        assert "m=audio" in offer.sdp
        assert "m=video" in offer.sdp
        assert "m=application" in offer.sdp
        assert offerer.signaling_state == "have-local-offer"
        offerer.on_state_change.assert_any_call(SIGNALING, "have-local-offer")

        await answerer.set_remote_description(offer)
        assert answerer.has_remote_description
        answer = await answerer.create_answer()
        await offerer.set_remote_description(answer)

        assert answer.type == "answer"
        assert offerer.signaling_state == "stable"
        assert answerer.signaling_state == "stable"

        await offerer.close()
        await answerer.close()

    @pytest.mark.asyncio
    async def test_reoffer_keeps_transceivers(self) -> None:
        """Test offering again does not add more receive transceivers."""
        engine = PeerEngine([])

        await engine.create_offer()
        await engine.create_offer()

        assert len(engine.pc.getTransceivers()) == 2
        await engine.close()

    @pytest.mark.asyncio
    async def test_malformed_candidate_rejected(self) -> None:
        """Test an unparsable candidate line raises ValueError."""
        engine = PeerEngine([])

        with pytest.raises(ValueError, match="Malformed ICE candidate"):
            await engine.add_ice_candidate(IceCandidatePayload(candidate="candidate:garbage"))

        await engine.close()

    @pytest.mark.asyncio
    async def test_replace_track(self) -> None:
        """Test replacing swaps the sender of the same kind and adds new kinds."""
        engine = PeerEngine([])
        microphone = AudioStreamTrack()
        engine.add_track(microphone)

        replacement = AudioStreamTrack()
        engine.replace_track(replacement)
        camera = VideoStreamTrack()
        engine.replace_track(camera)

        sent = [sender.track for sender in engine.pc.getSenders()]
        assert replacement in sent
        assert camera in sent
        assert microphone not in sent

        await engine.close()

    @pytest.mark.asyncio
    async def test_close_detaches_callbacks(self) -> None:
        """Test callbacks are not invoked for close-time state changes."""
        engine = PeerEngine([])
        callback = Mock()
        engine.on_state_change = callback

        await engine.close()

        callback.assert_not_called()
        assert engine.on_state_change is None
        assert engine.signaling_state == "closed"
