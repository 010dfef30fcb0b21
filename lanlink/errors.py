"""Exception hierarchy shared by the codec, the state machine and the facade."""

from __future__ import annotations

from typing import Any, Dict, Optional


class LanLinkError(Exception):
    """Base exception for lanlink sessions."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class InvalidState(LanLinkError):
    """Operation is not allowed in the session's current state."""


class DecodeError(LanLinkError):
    """A serialized session description could not be decoded."""


class ChannelNotOpen(LanLinkError):
    """A message was sent before the data channel was open."""


class NegotiationRejected(LanLinkError):
    """The transport engine refused a session description."""


class TransportFailed(LanLinkError):
    """The transport engine reported the connection as failed."""
