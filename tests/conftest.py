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

"""Shared fixtures: scripted connection engine, recording transport, fast timers."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio

from peerlink.core.config import Settings
from peerlink.session.coordinator import NegotiationCoordinator
from peerlink.session.engine import CONNECTION, ICE_CONNECTION, SIGNALING
from peerlink.session.identity import PeerIdentity
from peerlink.signaling.envelope import (
    IceCandidatePayload,
    SessionDescriptionPayload,
    SignalEnvelope,
    SignalType,
)


class FakeEngine:
    """Connection engine following aiortc's signaling state rules, without networking."""

    def __init__(self, ice_servers: list[dict[str, Any]]) -> None:
        self.ice_servers = ice_servers
        self.on_state_change = None
        self.on_local_candidate = None
        self.on_remote_track = None

        self._connection_state = "new"
        self._signaling_state = "stable"
        self._ice_connection_state = "new"

        self.local_description: SessionDescriptionPayload | None = None
        self.remote_description: SessionDescriptionPayload | None = None
        self.applied_candidates: list[IceCandidatePayload] = []
        self.data_channels: list[str] = []
        self.tracks: list[Any] = []
        self.replaced_tracks: list[Any] = []
        self.offers_created = 0
        self.closed = False

        # Fault injection
        self.fail_create_offer = False
        self.fail_remote_description = False
        self.failing_candidates: set[str] = set()
        self.block_remote_description: asyncio.Event | None = None
        self.remote_description_started = asyncio.Event()

    @property
    def connection_state(self) -> str:
        return self._connection_state

    @property
    def signaling_state(self) -> str:
        return self._signaling_state

    @property
    def ice_connection_state(self) -> str:
        return self._ice_connection_state

    @property
    def ice_gathering_state(self) -> str:
        return "complete"

    @property
    def has_remote_description(self) -> bool:
        return self.remote_description is not None

    def ensure_data_channel(self, label: str) -> None:
        if not self.data_channels:
            self.data_channels.append(label)

    async def create_offer(self) -> SessionDescriptionPayload:
        if self.fail_create_offer:
            raise RuntimeError("createOffer failed")
        if self._signaling_state not in ("stable", "have-local-offer"):
            raise RuntimeError(f"Cannot create offer in signaling state {self._signaling_state}")

        self.offers_created += 1
        offer = SessionDescriptionPayload(type="offer", sdp=f"offer-{id(self)}-{self.offers_created}")
        self.local_description = offer
        self._set_signaling("have-local-offer")
        return offer

    async def create_answer(self) -> SessionDescriptionPayload:
        if self._signaling_state != "have-remote-offer":
            raise RuntimeError(f"Cannot create answer in signaling state {self._signaling_state}")

        answer = SessionDescriptionPayload(type="answer", sdp=f"answer-{id(self)}")
        self.local_description = answer
        self._set_signaling("stable")
        return answer

    async def set_remote_description(self, description: SessionDescriptionPayload) -> None:
        self.remote_description_started.set()
        if self.block_remote_description is not None:
            await self.block_remote_description.wait()
        await asyncio.sleep(0)

        if self.fail_remote_description:
            raise ValueError("Invalid session description")

        if description.type == "offer":
            if self._signaling_state not in ("stable", "have-remote-offer"):
                raise RuntimeError(f"Cannot handle offer in signaling state {self._signaling_state}")
            self.remote_description = description
            self._set_signaling("have-remote-offer")
        else:
            if self._signaling_state != "have-local-offer":
                raise RuntimeError(f"Cannot handle answer in signaling state {self._signaling_state}")
            self.remote_description = description
            self._set_signaling("stable")

    async def add_ice_candidate(self, candidate: IceCandidatePayload) -> None:
        if self.remote_description is None:
            raise RuntimeError("No remote description")
        if candidate.candidate in self.failing_candidates:
            raise ValueError(f"Malformed ICE candidate: {candidate.candidate!r}")
        self.applied_candidates.append(candidate)

    def add_track(self, track: Any) -> None:
        if getattr(track, "fail_attach", False):
            raise RuntimeError("Cannot add track")
        self.tracks.append(track)

    def replace_track(self, track: Any) -> None:
        self.replaced_tracks.append(track)

    async def close(self) -> None:
        self.on_state_change = None
        self.on_local_candidate = None
        self.on_remote_track = None
        self.closed = True
        self._connection_state = "closed"
        self._signaling_state = "closed"

    # Simulation helpers

    def simulate_connection_state(self, value: str) -> None:
        self._connection_state = value
        if self.on_state_change:
            self.on_state_change(CONNECTION, value)

    def simulate_ice_connection_state(self, value: str) -> None:
        self._ice_connection_state = value
        if self.on_state_change:
            self.on_state_change(ICE_CONNECTION, value)

    def simulate_local_candidate(self, candidate: IceCandidatePayload) -> None:
        if self.on_local_candidate:
            self.on_local_candidate(candidate)

    def simulate_remote_track(self, track: Any) -> None:
        if self.on_remote_track:
            self.on_remote_track(track)

    def _set_signaling(self, value: str) -> None:
        self._signaling_state = value
        if self.on_state_change:
            self.on_state_change(SIGNALING, value)


class EngineRecorder:
    """Engine factory remembering every engine it built."""

    def __init__(self) -> None:
        self.engines: list[FakeEngine] = []

    def __call__(self, ice_servers: list[dict[str, Any]]) -> FakeEngine:
        engine = FakeEngine(ice_servers)
        self.engines.append(engine)
        return engine

    @property
    def current(self) -> FakeEngine:
        return self.engines[-1]

    @property
    def alive(self) -> list[FakeEngine]:
        return [engine for engine in self.engines if not engine.closed]


class RecordingTransport:
    """Transport that records published envelopes instead of sending them."""

    def __init__(self) -> None:
        self.published: list[SignalEnvelope] = []
        self.room_id: str | None = None
        self.on_envelope = None
        self.unsubscribe_calls = 0
        self.fail_publish = False
        self.fail_unsubscribe = False

    async def subscribe(self, room_id: str, on_envelope: Any) -> None:
        self.room_id = room_id
        self.on_envelope = on_envelope

    async def publish(self, envelope: SignalEnvelope) -> None:
        if self.fail_publish:
            raise ConnectionError("Relay unavailable")
        self.published.append(envelope)

    async def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        if self.fail_unsubscribe:
            raise ConnectionError("Relay unavailable")
        self.room_id = None

    def of_type(self, signal_type: SignalType) -> list[SignalEnvelope]:
        return [envelope for envelope in self.published if envelope.type == signal_type]


def candidate(n: int) -> IceCandidatePayload:
    return IceCandidatePayload(
        candidate=f"candidate:{n} 1 UDP 2130706431 192.168.1.{n} 5432{n} typ host",
        sdp_mid="0",
        sdp_mline_index=0,
    )


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        ice_servers=[],
        announce_initial_delay=0.01,
        announce_interval=0.05,
        negotiation_timeout=0.3,
        failed_restart_delay=0.05,
    )


@pytest.fixture
def make_candidate() -> Callable[[int], IceCandidatePayload]:
    return candidate


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait_until


@pytest.fixture
def engine_factory() -> EngineRecorder:
    return EngineRecorder()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def new_recorder() -> Callable[[], EngineRecorder]:
    return EngineRecorder


@pytest.fixture
def new_transport() -> Callable[[], RecordingTransport]:
    return RecordingTransport


@pytest_asyncio.fixture
async def make_coordinator(fast_settings: Settings):
    """Build and start coordinators; all of them are stopped after the test."""
    started: list[NegotiationCoordinator] = []

    async def _make(
        identity: str,
        transport: Any,
        engine_factory: EngineRecorder,
        settings: Settings | None = None,
        local_tracks: list[Any] | None = None,
    ) -> NegotiationCoordinator:
        coordinator = NegotiationCoordinator(
            PeerIdentity(identity),
            transport,
            settings=settings or fast_settings,
            engine_factory=engine_factory,
            local_tracks=local_tracks,
        )
        await coordinator.start()
        started.append(coordinator)
        return coordinator

    yield _make

    for coordinator in started:
        await coordinator.stop()
