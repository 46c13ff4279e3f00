"""Exceptions raised by the giveaway engine and its adapters."""

from __future__ import annotations


class GiveawayError(RuntimeError):
    """Base class for giveaway engine failures."""


class ChannelUnavailable(GiveawayError):
    """Raised when a channel cannot be resolved or does not accept messages."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"Channel {channel_id} not found or not text-based.")
        self.channel_id = channel_id


class NotFound(GiveawayError):
    """Raised when a giveaway does not exist or has already ended."""

    def __init__(self, giveaway_id: str) -> None:
        super().__init__(f"No active giveaway found with id {giveaway_id}.")
        self.giveaway_id = giveaway_id


class PersistenceFailure(GiveawayError):
    """Raised when a storage backend fails to read or write records."""
