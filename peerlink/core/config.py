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

"""Configuration settings for PeerLink sessions."""

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ICE_SERVERS: list[dict[str, Any]] = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:global.stun.twilio.com:3478"},
    {"urls": "stun:stun.stunprotocol.org:3478"},
    {"urls": "stun:stun1.l.google.com:19302"},
    {"urls": "stun:stun2.l.google.com:19302"},
]


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="PEERLINK_"
    )

    # ICE servers (preserved across engine rebuilds)
    ice_servers: list[dict[str, Any]] = Field(
        default_factory=lambda: [dict(server) for server in DEFAULT_ICE_SERVERS]
    )

    # Presence announcements (seconds)
    announce_initial_delay: float = 0.5  # Let the relay subscription settle
    announce_interval: float = 2.0

    # Negotiation and recovery (seconds)
    negotiation_timeout: float = 10.0
    failed_restart_delay: float = 2.0  # Debounce restarts under flapping connectivity

    # Data channel opened by the initiator so a session exists without media
    data_channel_label: str = "keepalive"

    # Broadcast relay for the WebSocket transport
    relay_url: str = "ws://localhost:8001"


settings = Settings()
