"""Messaging platform boundary used by the engine."""

from __future__ import annotations

import abc
from typing import Callable, List

from .models import Announcement, Entrant

EntryCallback = Callable[[Entrant], None]


class MessagingPort(abc.ABC):
    """Operations the engine needs from the messaging platform.

    Channel and message references are opaque strings.
    """

    @abc.abstractmethod
    async def resolve_channel(self, channel_id: str) -> bool:
        """Return whether the channel exists and accepts messages."""

    @abc.abstractmethod
    async def post_announcement(self, channel_id: str, announcement: Announcement) -> str:
        """Post an announcement and return its message reference."""

    @abc.abstractmethod
    async def edit_announcement(
        self, channel_id: str, message_id: str, announcement: Announcement
    ) -> None:
        ...

    @abc.abstractmethod
    async def add_reaction(self, channel_id: str, message_id: str, symbol: str) -> None:
        ...

    @abc.abstractmethod
    async def fetch_entrants(
        self, channel_id: str, message_id: str, symbol: str
    ) -> List[Entrant]:
        """Return everyone (except the announcement author) who reacted with ``symbol``."""

    @abc.abstractmethod
    def subscribe_entry_reactions(
        self, channel_id: str, message_id: str, symbol: str, on_entry: EntryCallback
    ) -> Callable[[], None]:
        """Invoke ``on_entry`` for each new ``symbol`` reaction; returns an unsubscribe callable."""

    @abc.abstractmethod
    async def remove_reaction(
        self, channel_id: str, message_id: str, symbol: str, user_id: str
    ) -> None:
        ...

    @abc.abstractmethod
    async def post_transient(self, channel_id: str, content: str, ttl: float) -> None:
        """Post a message that deletes itself after ``ttl`` seconds."""
