import logging
from typing import Optional

import discord

from ..errors import ExternalServiceError, NotFoundError
from ..services.formatting import split_message

logger = logging.getLogger(__name__)


class DiscordGateway:
    """Outbound Discord calls used by the relay, with errors wrapped."""

    def __init__(self, client: discord.Client, inbox_guild_id: int, inbox_category_id: Optional[int] = None):
        self.client = client
        self.inbox_guild_id = inbox_guild_id
        self.inbox_category_id = inbox_category_id

    def inbox_guild(self) -> discord.Guild:
        guild = self.client.get_guild(self.inbox_guild_id)
        if guild is None:
            raise NotFoundError(f"Inbox guild {self.inbox_guild_id} is not available")
        return guild

    async def _channel(self, channel_id: int):
        channel = self.client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(channel_id)
            except discord.NotFound as e:
                raise NotFoundError(f"Channel {channel_id} does not exist") from e
            except discord.HTTPException as e:
                raise ExternalServiceError(f"Could not fetch channel {channel_id}: {e}") from e
        return channel

    async def _send(self, messageable, content: str, allowed_mentions=None) -> int:
        first_id = None
        try:
            for part in split_message(content):
                sent = await messageable.send(part, allowed_mentions=allowed_mentions)
                if first_id is None:
                    first_id = sent.id
        except discord.HTTPException as e:
            raise ExternalServiceError(f"Send failed: {e}") from e
        return first_id

    async def post(self, channel_id: int, content: str, mention_everyone: bool = False) -> int:
        channel = await self._channel(channel_id)
        allowed = discord.AllowedMentions(everyone=mention_everyone, users=True, roles=False)
        return await self._send(channel, content, allowed_mentions=allowed)

    async def send_dm(self, user_id: int, content: str) -> int:
        try:
            user = self.client.get_user(user_id) or await self.client.fetch_user(user_id)
        except discord.HTTPException as e:
            raise ExternalServiceError(f"Could not fetch user {user_id}: {e}") from e
        return await self._send(user, content, allowed_mentions=discord.AllowedMentions.none())

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        channel = await self._channel(channel_id)
        try:
            await channel.get_partial_message(message_id).delete()
        except discord.NotFound:
            logger.debug("Message %s in %s was already deleted", message_id, channel_id)
        except discord.HTTPException as e:
            raise ExternalServiceError(f"Could not delete message {message_id}: {e}") from e

    async def create_channel(self, name: str) -> int:
        guild = self.inbox_guild()
        category = guild.get_channel(self.inbox_category_id) if self.inbox_category_id else None
        try:
            channel = await guild.create_text_channel(name, category=category, reason="New modmail thread")
        except discord.HTTPException as e:
            raise ExternalServiceError(f"Could not create channel {name!r}: {e}") from e
        return channel.id

    async def delete_channel(self, channel_id: int) -> None:
        try:
            channel = await self._channel(channel_id)
        except NotFoundError:
            logger.debug("Channel %s was already deleted", channel_id)
            return
        try:
            await channel.delete(reason="Modmail thread closed")
        except discord.NotFound:
            logger.debug("Channel %s was already deleted", channel_id)
        except discord.HTTPException as e:
            raise ExternalServiceError(f"Could not delete channel {channel_id}: {e}") from e
