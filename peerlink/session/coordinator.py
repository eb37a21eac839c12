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

"""Negotiation coordinator: the peer session state machine.

Every input (relay envelopes, engine callbacks, timer expiries) becomes an
event on a single queue. One consumer task handles each event to completion,
including the engine's asynchronous description work, before taking the next,
so session state is never mutated by two handlers at once.

Roles are decided per announcement: the peer with the greater identity
offers, the other one keeps announcing and answers. A peer receiving an
offer while its own offer is outstanding yields to the remote offer.
"""

import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from typing import Any

from ..core.config import Settings
from ..core.config import settings as default_settings
from ..signaling.envelope import (
    ChatMessage,
    IceCandidatePayload,
    SignalEnvelope,
    SignalType,
)
from ..signaling.transport import SignalingTransport
from .announcer import AnnouncementScheduler
from .engine import (
    CONNECTION,
    ICE_CONNECTION,
    ICE_GATHERING,
    SIGNALING,
    ConnectionEngine,
    EngineFactory,
    create_engine,
)
from .events import (
    CoordinatorEvent,
    EngineStateChanged,
    EnvelopeReceived,
    LocalCandidateGathered,
    NegotiationTimedOut,
    RemoteTrackReceived,
    RestartRequested,
)
from .identity import PeerIdentity
from .reconnection import ReconnectionManager
from .state import ConnectionStatus, NegotiationPhase, NegotiationSession
from .timers import SingleShotTimer

logger = logging.getLogger(__name__)


class NegotiationCoordinator:
    """Drives one two-party session over a best-effort broadcast relay."""

    def __init__(
        self,
        identity: PeerIdentity,
        transport: SignalingTransport,
        settings: Settings | None = None,
        engine_factory: EngineFactory = create_engine,
        local_tracks: list[Any] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            identity: This process's identity for the session
            transport: Subscribed relay used for outbound envelopes
            settings: Timing and ICE configuration
            engine_factory: Builds a connection engine from an ICE server list
            local_tracks: Locally captured media tracks, attached to every engine
        """
        self.identity = identity
        self.transport = transport
        self.settings = settings or default_settings
        self.session = NegotiationSession(local_tracks)

        self._events: asyncio.Queue[CoordinatorEvent] = asyncio.Queue()
        self._loop_task: asyncio.Task[None] | None = None

        self.negotiation_timer = SingleShotTimer("negotiation")
        self.restart_timer = SingleShotTimer("restart")
        self.announcer = AnnouncementScheduler(
            self._announce,
            self._engine_connected,
            initial_delay=self.settings.announce_initial_delay,
            interval=self.settings.announce_interval,
        )
        self.reconnection = ReconnectionManager(
            self.session,
            engine_factory,
            self.settings.ice_servers,
            self.announcer,
            [self.negotiation_timer, self.restart_timer],
            attach_engine=self._attach_engine,
            set_status=self._set_status,
            clear_remote_media=self._clear_remote_media,
        )

        self.offers_sent: int = 0
        self.chat_messages: list[ChatMessage] = []
        self._seen_chat_ids: set[str] = set()

        # Callbacks
        self.on_status_change: Callable[[ConnectionStatus, str], None] | None = None
        self.on_chat_message: Callable[[ChatMessage], None] | None = None
        self.on_remote_track: Callable[[Any | None], None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create the first engine, start the event loop and begin announcing.

        Raises:
            RuntimeError: If the coordinator was already started or stopped
        """
        if self._loop_task is not None or self.session.closed:
            raise RuntimeError("Coordinator already started")

        await self.reconnection.rebuild_engine()
        self._loop_task = asyncio.create_task(self._run())

        self.session.transition(NegotiationPhase.WAITING)
        self._set_status(ConnectionStatus.WAITING_FOR_PEER, "Searching for peer...")
        self.announcer.start()

    async def stop(self) -> None:
        """Tear down the session.

        Sends a best-effort `leave`, stops the event loop and every timer,
        and closes the engine. Safe to call mid-negotiation and more than once.
        """
        if self.session.closed:
            return

        self.session.transition(NegotiationPhase.CLOSED)
        try:
            await self._publish(SignalEnvelope.leave(self.identity.value))
        finally:
            if self._loop_task is not None:
                self._loop_task.cancel()
                try:
                    await self._loop_task
                except asyncio.CancelledError:
                    pass
                self._loop_task = None

            await self.reconnection.close()
            self.session.peer_connected = False
            self._set_status(ConnectionStatus.DISCONNECTED, "Left room")
            logger.info("Coordinator stopped")

    def deliver(self, envelope: SignalEnvelope) -> None:
        """Transport callback: queue an inbound envelope."""
        self._post(EnvelopeReceived(envelope))

    def request_restart(self, reason: str) -> None:
        """Queue a full restart of whatever engine is current."""
        self._post(RestartRequested(reason))

    async def settle(self) -> None:
        """Wait until every queued event has been handled."""
        await self._events.join()

    # ------------------------------------------------------------------
    # Outbound helpers used by the room
    # ------------------------------------------------------------------

    async def send_chat(self, text: str) -> ChatMessage:
        """Record and broadcast a chat message.

        Raises:
            ValueError: If the message is empty
        """
        if not text.strip():
            raise ValueError("Chat message cannot be empty")

        message = ChatMessage(
            id=secrets.token_hex(4),
            text=text,
            sender_id=self.identity.value,
            timestamp=int(time.time() * 1000),
        )
        self._record_chat(message)
        await self._publish(SignalEnvelope.chat(message))
        return message

    def replace_local_track(self, track: Any) -> None:
        """Swap the local track of the same kind (e.g. camera for screen share)."""
        tracks = self.session.local_tracks
        for index, existing in enumerate(tracks):
            if getattr(existing, "kind", None) == track.kind:
                tracks[index] = track
                break
        else:
            tracks.append(track)

        if self.session.engine is not None:
            self.session.engine.replace_track(track)

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    def _post(self, event: CoordinatorEvent) -> None:
        self._events.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._dispatch(event)
            except Exception as e:
                logger.error(f"Unhandled error processing {type(event).__name__}: {e!r}")
            finally:
                self._events.task_done()

    async def _dispatch(self, event: CoordinatorEvent) -> None:
        if isinstance(event, EnvelopeReceived):
            await self._handle_envelope(event.envelope)
            return

        if isinstance(event, RestartRequested):
            if event.generation is not None and self._is_stale(event.generation):
                logger.debug(f"Dropping restart for a replaced engine ({event.reason})")
                return
            await self.reconnection.restart(event.reason)
            return

        if isinstance(
            event,
            (EngineStateChanged, LocalCandidateGathered, RemoteTrackReceived, NegotiationTimedOut),
        ) and self._is_stale(event.generation):
            logger.debug(f"Dropping {type(event).__name__} from a replaced engine")
            return

        if isinstance(event, EngineStateChanged):
            await self._handle_engine_state(event.category, event.value)
        elif isinstance(event, LocalCandidateGathered):
            await self._publish(SignalEnvelope.ice_candidate(self.identity.value, event.candidate))
        elif isinstance(event, RemoteTrackReceived):
            self._handle_remote_track(event.track)
        elif isinstance(event, NegotiationTimedOut):
            await self._handle_negotiation_timeout()

    def _is_stale(self, generation: int) -> bool:
        return generation != self.session.generation

    def _attach_engine(self, engine: ConnectionEngine, generation: int) -> None:
        def on_state_change(category: str, value: str) -> None:
            self._post(EngineStateChanged(generation, category, value))

        def on_local_candidate(candidate: IceCandidatePayload) -> None:
            self._post(LocalCandidateGathered(generation, candidate))

        def on_remote_track(track: Any) -> None:
            self._post(RemoteTrackReceived(generation, track))

        engine.on_state_change = on_state_change
        engine.on_local_candidate = on_local_candidate
        engine.on_remote_track = on_remote_track

    # ------------------------------------------------------------------
    # Inbound envelopes
    # ------------------------------------------------------------------

    async def _handle_envelope(self, envelope: SignalEnvelope) -> None:
        # The relay may echo our own envelopes back
        if envelope.sender_id == self.identity.value:
            logger.debug(f"Ignoring own {envelope.type.value} envelope")
            return

        # Chat is independent of the connection state
        if envelope.type == SignalType.CHAT:
            if envelope.chat_message is not None:
                self._record_chat(envelope.chat_message)
            return

        if self.session.engine is None or self.session.closed:
            return

        logger.debug(f"Received {envelope.type.value} from {envelope.sender_id}")
        self.session.peer_id = envelope.sender_id

        try:
            if envelope.type == SignalType.ANNOUNCE:
                await self._on_announce(envelope.sender_id)
            elif envelope.type == SignalType.OFFER:
                await self._on_offer(envelope)
            elif envelope.type == SignalType.ANSWER:
                await self._on_answer(envelope)
            elif envelope.type == SignalType.ICE_CANDIDATE:
                await self._on_remote_candidate(envelope.candidate)
            elif envelope.type == SignalType.LEAVE:
                await self._on_leave()
        except Exception as e:
            logger.error(f"Signaling error handling {envelope.type.value}: {e!r}")
            if envelope.type in (SignalType.OFFER, SignalType.ANSWER):
                await self.reconnection.restart(f"{envelope.type.value} processing failed")

    async def _on_announce(self, sender_id: str) -> None:
        engine = self._engine()
        if engine.connection_state == "connected":
            return

        if not self.identity.outranks(sender_id):
            # Keep announcing: if the initiator never offers, our next
            # announcement is how it notices and retries
            logger.info("Announcement received. I am follower, waiting for offer...")
            return

        if engine.signaling_state != "stable" and engine.connection_state not in (
            "failed",
            "disconnected",
        ):
            logger.debug("Ignoring announcement, already negotiating")
            return

        if not self.session.can_transition(NegotiationPhase.OFFERING):
            logger.debug(f"Ignoring announcement in phase {self.session.phase.value}")
            return

        logger.info("Announcement received. I am initiator, calling peer...")
        await self._initiate()

    async def _initiate(self) -> None:
        self.announcer.stop()
        self.session.transition(NegotiationPhase.OFFERING)
        self._set_status(ConnectionStatus.NEGOTIATING, "Calling peer...")

        engine = self._engine()
        try:
            engine.ensure_data_channel(self.settings.data_channel_label)
            offer = await engine.create_offer()
        except Exception as e:
            logger.error(f"Error initiating connection: {e!r}")
            await self.reconnection.restart("offer creation failed")
            return

        self.offers_sent += 1
        await self._publish(SignalEnvelope.offer(self.identity.value, offer))
        self._arm_negotiation_timer()

    async def _on_offer(self, envelope: SignalEnvelope) -> None:
        if envelope.sdp is None:
            return

        if envelope.sdp.sdp == self.session.remote_offer_sdp:
            logger.debug("Ignoring duplicate offer")
            return

        logger.info("Received offer")
        # A handshake exists now
        self.announcer.stop()
        self._set_status(ConnectionStatus.NEGOTIATING, "Accepting connection...")

        engine = self._engine()
        collided = engine.signaling_state != "stable"
        if collided:
            # Glare: the side receiving an offer always yields to the sender
            logger.info("Offer collision, rolling back local offer")
            engine = await self.reconnection.rebuild_engine()

        await engine.set_remote_description(envelope.sdp)
        self.session.remote_offer_sdp = envelope.sdp.sdp
        await self.session.ice_queue.drain_into(engine.add_ice_candidate)

        answer = await engine.create_answer()
        self.session.transition(NegotiationPhase.CONNECTING)
        await self._publish(SignalEnvelope.answer(self.identity.value, answer))

        if collided:
            # Both sides may have yielded; the deadline now covers the rebuilt engine
            self._arm_negotiation_timer()

    async def _on_answer(self, envelope: SignalEnvelope) -> None:
        if envelope.sdp is None:
            return

        engine = self._engine()
        if (
            self.session.phase != NegotiationPhase.OFFERING
            or engine.signaling_state != "have-local-offer"
        ):
            logger.debug(
                f"Ignoring answer in phase {self.session.phase.value}, "
                f"signaling state {engine.signaling_state}"
            )
            return

        logger.info("Received answer")
        self._set_status(ConnectionStatus.NEGOTIATING, "Finalizing connection...")
        await engine.set_remote_description(envelope.sdp)
        self.session.transition(NegotiationPhase.CONNECTING)
        await self.session.ice_queue.drain_into(engine.add_ice_candidate)

    async def _on_remote_candidate(self, candidate: IceCandidatePayload | None) -> None:
        if candidate is None:
            return

        engine = self._engine()
        if not engine.has_remote_description:
            self.session.ice_queue.enqueue(candidate)
            return

        try:
            await engine.add_ice_candidate(candidate)
        except Exception as e:
            logger.warning(f"Error adding candidate: {e}")

    async def _on_leave(self) -> None:
        logger.info("Peer left")
        self._set_status(ConnectionStatus.WAITING_FOR_PEER, "Peer left. Waiting...")
        self._clear_remote_media()

        # Candidates and offers from the departed peer must not reach the next one
        await self.reconnection.restart("peer left", message="Peer left. Waiting...")

    # ------------------------------------------------------------------
    # Engine events and timers
    # ------------------------------------------------------------------

    async def _handle_engine_state(self, category: str, value: str) -> None:
        if category == SIGNALING:
            self.session.diagnostics["signaling"] = value
        elif category == ICE_CONNECTION:
            self.session.diagnostics["ice"] = value
        elif category == ICE_GATHERING:
            self.session.diagnostics["gathering"] = value
        elif category == CONNECTION:
            if value == "connected":
                self._on_connected()
            elif value == "disconnected":
                # May recover at the engine layer; only failure forces a rebuild
                self._set_status(ConnectionStatus.DISCONNECTED, "Peer disconnected")
                self.session.peer_connected = False
            elif value == "failed":
                self._set_status(ConnectionStatus.FAILED, "Connection failed. Retrying...")
                generation = self.session.generation
                self.restart_timer.arm(
                    self.settings.failed_restart_delay,
                    lambda: self._post(RestartRequested("connection failed", generation)),
                )

    def _arm_negotiation_timer(self) -> None:
        generation = self.session.generation
        self.negotiation_timer.arm(
            self.settings.negotiation_timeout,
            lambda: self._post(NegotiationTimedOut(generation)),
        )

    def _on_connected(self) -> None:
        self.negotiation_timer.cancel()
        self.announcer.stop()

        if self.session.can_transition(NegotiationPhase.CONNECTED):
            self.session.transition(NegotiationPhase.CONNECTED)
        else:
            logger.warning(f"Engine connected in phase {self.session.phase.value}")

        self.session.peer_connected = True
        self._set_status(ConnectionStatus.CONNECTED, "Securely connected")

    async def _handle_negotiation_timeout(self) -> None:
        engine = self._engine()
        if engine.connection_state == "connected" or engine.ice_connection_state in (
            "connected",
            "completed",
        ):
            return

        logger.info("Negotiation timed out. Retrying...")
        await self.reconnection.restart("negotiation timeout")

    def _handle_remote_track(self, track: Any) -> None:
        self.session.remote_tracks.append(track)
        self.session.peer_connected = True
        if self.on_remote_track:
            self.on_remote_track(track)

    def _clear_remote_media(self) -> None:
        had_media = bool(self.session.remote_tracks)
        self.session.remote_tracks = []
        self.session.peer_connected = False
        if had_media and self.on_remote_track:
            self.on_remote_track(None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _engine(self) -> ConnectionEngine:
        if self.session.engine is None:
            raise RuntimeError("Peer connection not initialized")
        return self.session.engine

    def _engine_connected(self) -> bool:
        engine = self.session.engine
        return engine is not None and engine.connection_state == "connected"

    async def _announce(self) -> None:
        await self._publish(SignalEnvelope.announce(self.identity.value))

    async def _publish(self, envelope: SignalEnvelope) -> None:
        try:
            await self.transport.publish(envelope)
            logger.debug(f"Sent {envelope.type.value}")
        except Exception as e:
            logger.warning(f"Failed to publish {envelope.type.value}: {e}")

    def _record_chat(self, message: ChatMessage) -> None:
        if message.id in self._seen_chat_ids:
            return

        self._seen_chat_ids.add(message.id)
        self.chat_messages.append(message)
        if message.sender_id != self.identity.value and self.on_chat_message:
            self.on_chat_message(message)

    def _set_status(self, status: ConnectionStatus, message: str) -> None:
        """Update observable status and notify callback."""
        if self.session.status == status and self.session.status_message == message:
            return

        old_status = self.session.status
        self.session.status = status
        self.session.status_message = message
        if old_status != status:
            logger.info(f"Status change: {old_status.value} → {status.value} ({message})")

        if self.on_status_change:
            self.on_status_change(status, message)
