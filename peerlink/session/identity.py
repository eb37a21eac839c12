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

"""Per-session peer identity used to elect the initiator."""

import secrets
import string
from functools import total_ordering

_ALPHABET = string.ascii_lowercase + string.digits


@total_ordering
class PeerIdentity:
    """Opaque random token identifying this process for one session.

    Identities order lexicographically by their string form. The greater
    identity of a pair is the initiator.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        if not value:
            raise ValueError("Peer identity cannot be empty")
        self._value = value

    @classmethod
    def generate(cls, length: int = 8) -> "PeerIdentity":
        return cls("".join(secrets.choice(_ALPHABET) for _ in range(length)))

    @property
    def value(self) -> str:
        return self._value

    def outranks(self, other: "PeerIdentity | str") -> bool:
        """Return True if this identity initiates against `other`."""
        return self._value > str(other)

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"PeerIdentity({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PeerIdentity):
            return self._value == other._value
        if isinstance(other, str):
            return self._value == other
        return NotImplemented

    def __lt__(self, other: "PeerIdentity | str") -> bool:
        if isinstance(other, (PeerIdentity, str)):
            return self._value < str(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)
