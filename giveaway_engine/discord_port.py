"""discord.py implementation of the messaging port."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

import discord
from discord.ext import commands

from .errors import ChannelUnavailable
from .models import Announcement, Entrant
from .ports import EntryCallback, MessagingPort

log = logging.getLogger(__name__)

PostableChannel = Union[discord.TextChannel, discord.Thread]


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def entrant_from_user(user: Union[discord.User, discord.Member]) -> Entrant:
    joined_at = getattr(user, "joined_at", None)
    roles = getattr(user, "roles", None) or ()
    return Entrant(
        id=str(user.id),
        bot=user.bot,
        created_at=_to_ms(user.created_at),
        joined_at=_to_ms(joined_at) if joined_at else None,
        role_ids=frozenset(str(role.id) for role in roles),
    )


def embed_from_announcement(announcement: Announcement) -> discord.Embed:
    embed = discord.Embed(
        title=announcement.title,
        description=announcement.description,
        color=discord.Color.dark_red() if announcement.ended else discord.Color.red(),
    )
    if announcement.footer:
        embed.set_footer(text=announcement.footer)
    return embed


class DiscordMessaging(MessagingPort):
    """Posts giveaway embeds and relays entry reactions for a ``commands.Bot``."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self._subscriptions: Dict[int, List[Tuple[str, EntryCallback]]] = {}
        bot.add_listener(self._on_raw_reaction_add, "on_raw_reaction_add")

    async def resolve_channel(self, channel_id: str) -> bool:
        return await self._fetch_channel(channel_id) is not None

    async def post_announcement(self, channel_id: str, announcement: Announcement) -> str:
        channel = await self._require_channel(channel_id)
        message = await channel.send(embed=embed_from_announcement(announcement))
        return str(message.id)

    async def edit_announcement(
        self, channel_id: str, message_id: str, announcement: Announcement
    ) -> None:
        channel = await self._require_channel(channel_id)
        await channel.get_partial_message(int(message_id)).edit(
            embed=embed_from_announcement(announcement)
        )

    async def add_reaction(self, channel_id: str, message_id: str, symbol: str) -> None:
        channel = await self._require_channel(channel_id)
        await channel.get_partial_message(int(message_id)).add_reaction(symbol)

    async def fetch_entrants(
        self, channel_id: str, message_id: str, symbol: str
    ) -> List[Entrant]:
        channel = await self._require_channel(channel_id)
        message = await channel.fetch_message(int(message_id))
        reaction = next((r for r in message.reactions if str(r.emoji) == symbol), None)
        if reaction is None:
            return []

        own_id = self.bot.user.id if self.bot.user else None
        entrants: List[Entrant] = []
        async for user in reaction.users():
            if user.id == own_id:
                continue
            member = await self._resolve_member(channel.guild, user)
            entrants.append(entrant_from_user(member))
        return entrants

    def subscribe_entry_reactions(
        self, channel_id: str, message_id: str, symbol: str, on_entry: EntryCallback
    ) -> Callable[[], None]:
        key = int(message_id)
        entry = (symbol, on_entry)
        self._subscriptions.setdefault(key, []).append(entry)

        def unsubscribe() -> None:
            callbacks = self._subscriptions.get(key)
            if not callbacks:
                return
            try:
                callbacks.remove(entry)
            except ValueError:
                return
            if not callbacks:
                self._subscriptions.pop(key, None)

        return unsubscribe

    async def remove_reaction(
        self, channel_id: str, message_id: str, symbol: str, user_id: str
    ) -> None:
        channel = await self._require_channel(channel_id)
        try:
            await channel.get_partial_message(int(message_id)).remove_reaction(
                symbol, discord.Object(id=int(user_id))
            )
        except discord.NotFound:
            log.warning(
                "Could not remove reaction of %s on message %s: message not found.",
                user_id,
                message_id,
            )

    async def post_transient(self, channel_id: str, content: str, ttl: float) -> None:
        channel = await self._require_channel(channel_id)
        await channel.send(content, delete_after=ttl)

    # --- Internal helpers -------------------------------------------------

    async def _on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        callbacks = self._subscriptions.get(payload.message_id)
        if not callbacks:
            return
        if self.bot.user and payload.user_id == self.bot.user.id:
            return
        symbol = str(payload.emoji)
        matching = [callback for wanted, callback in callbacks if wanted == symbol]
        if not matching:
            return

        user: Optional[Union[discord.User, discord.Member]] = payload.member
        if user is None:
            user = self.bot.get_user(payload.user_id)
        if user is None:
            try:
                user = await self.bot.fetch_user(payload.user_id)
            except discord.HTTPException as exc:
                log.warning("Unable to resolve reacting user %s: %s", payload.user_id, exc)
                return
        entrant = entrant_from_user(user)
        for callback in matching:
            callback(entrant)

    async def _resolve_member(
        self, guild: Optional[discord.Guild], user: Union[discord.User, discord.Member]
    ) -> Union[discord.User, discord.Member]:
        if guild is None or isinstance(user, discord.Member):
            return user
        member = guild.get_member(user.id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user.id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return user

    async def _require_channel(self, channel_id: str) -> PostableChannel:
        channel = await self._fetch_channel(channel_id)
        if channel is None:
            raise ChannelUnavailable(channel_id)
        return channel

    async def _fetch_channel(self, channel_id: str) -> Optional[PostableChannel]:
        try:
            key = int(channel_id)
        except (TypeError, ValueError):
            return None
        channel = self.bot.get_channel(key)
        if isinstance(channel, (discord.TextChannel, discord.Thread)):
            return channel
        try:
            fetched = await self.bot.fetch_channel(key)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None
        return fetched if isinstance(fetched, (discord.TextChannel, discord.Thread)) else None
