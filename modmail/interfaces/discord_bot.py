import inspect
import logging
from typing import Optional

import discord

from .. import settings
from ..domain.entities import AttachmentRef, IncomingMessage, UserRef
from ..infrastructure.attachments import AttachmentStore
from ..infrastructure.database import Database
from ..infrastructure.discord_gateway import DiscordGateway
from ..services.commands import parse_command
from ..services.relay import RelayOptions
from ..services.state import ModmailState

logger = logging.getLogger(__name__)

USER_MESSAGE_TYPES = (discord.MessageType.default, discord.MessageType.reply)


def relay_options_from_settings() -> RelayOptions:
    return RelayOptions(
        prefix=settings.PREFIX,
        snippet_prefix=settings.SNIPPET_PREFIX,
        always_reply=settings.ALWAYS_REPLY,
        always_reply_anon=settings.ALWAYS_REPLY_ANON,
        log_channel_id=settings.LOG_CHANNEL_ID,
    )


class ModmailClient(discord.Client):
    def __init__(self, **kwargs):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True
        intents.members = True
        super().__init__(intents=intents, **kwargs)
        self.state: Optional[ModmailState] = None

    async def setup_hook(self) -> None:
        self.state = ModmailState.build(
            store=Database(),
            gateway=DiscordGateway(self, settings.INBOX_GUILD_ID, settings.INBOX_CATEGORY_ID),
            attachments=AttachmentStore(),
            options=relay_options_from_settings(),
        )
        await self.state.start()

    async def close(self) -> None:
        if self.state is not None:
            await self.state.shutdown()
        await super().close()

    async def on_ready(self):
        logger.info("Logged in as %s, watching %s guild(s)", self.user, len(self.guilds))
        await self.change_presence(activity=discord.Game(name=settings.STATUS))

    def _is_staff(self, member) -> bool:
        if not isinstance(member, discord.Member) or member.guild.id != settings.INBOX_GUILD_ID:
            return False
        return bool(getattr(member.guild_permissions, settings.INBOX_SERVER_PERMISSION, False))

    def to_incoming(self, message: discord.Message) -> IncomingMessage:
        guild_id = message.guild.id if message.guild else None
        author = message.author
        member = author if isinstance(author, discord.Member) else None
        inbox = self.get_guild(settings.INBOX_GUILD_ID)
        role = None
        if member is not None and not member.top_role.is_default():
            role = member.top_role.name

        return IncomingMessage(
            id=message.id,
            channel_id=message.channel.id,
            author=UserRef(id=author.id, name=author.name, bot=author.bot),
            content=message.content,
            clean_content=message.clean_content,
            attachments=[AttachmentRef(a.id, a.filename, a.url) for a in message.attachments],
            is_private=isinstance(message.channel, discord.DMChannel),
            on_inbox_guild=guild_id == settings.INBOX_GUILD_ID,
            on_main_guild=guild_id == settings.MAIN_GUILD_ID,
            author_is_staff=self._is_staff(member),
            author_in_inbox=inbox is not None and inbox.get_member(author.id) is not None,
            author_role=role,
            mentions_bot=self.user is not None and any(u.id == self.user.id for u in message.mentions),
            is_default_type=message.type in USER_MESSAGE_TYPES,
        )

    async def _isolated(self, event: str, handler, *args) -> None:
        """Run one event handler; its failure is logged and goes no further."""
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Error while handling %s", event)

    async def _dispatch_command(self, msg: IncomingMessage) -> None:
        parsed = parse_command(msg.content, settings.PREFIX)
        if parsed is None:
            return
        name, args = parsed
        handler = self.state.commands.get(name)
        if handler is None:
            return
        thread = await self.state.registry.find_open_thread_by_channel(msg.channel_id)
        await handler(msg, args, thread)

    async def on_message(self, message: discord.Message):
        if message.author == self.user or self.state is None:
            return

        engine = self.state.engine
        msg = self.to_incoming(message)
        if msg.is_private:
            await self._isolated("direct message", engine.handle_direct_message, msg)
        elif msg.on_inbox_guild:
            if msg.author_is_staff and not msg.author.bot:
                await self._isolated("command", self._dispatch_command, msg)
            await self._isolated("staff message", engine.handle_staff_channel_message, msg)
        elif msg.on_main_guild:
            await self._isolated("mention", engine.handle_main_space_mention, msg)

    async def on_message_edit(self, before: discord.Message, after: discord.Message):
        if self.state is None:
            return
        await self._isolated("message edit", self.state.engine.handle_edit, before.content, self.to_incoming(after))

    async def on_raw_message_edit(self, payload: discord.RawMessageUpdateEvent):
        # Cached messages are handled by on_message_edit.
        if payload.cached_message is not None or self.state is None:
            return
        if not payload.data.get("edited_timestamp"):
            return
        await self._isolated("uncached message edit", self._handle_uncached_edit, payload)

    async def _handle_uncached_edit(self, payload: discord.RawMessageUpdateEvent) -> None:
        channel = self.get_channel(payload.channel_id) or await self.fetch_channel(payload.channel_id)
        message = await channel.fetch_message(payload.message_id)
        await self.state.engine.handle_edit(None, self.to_incoming(message))

    async def on_message_delete(self, message: discord.Message):
        if self.state is None:
            return
        await self._isolated("message delete", self.state.engine.handle_delete, self.to_incoming(message))

    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent):
        # Cached messages are handled by on_message_delete.
        if payload.cached_message is not None or self.state is None:
            return
        if payload.guild_id != settings.INBOX_GUILD_ID:
            return
        await self._isolated(
            "uncached message delete",
            self.state.engine.handle_uncached_delete,
            payload.channel_id,
            payload.message_id,
        )


def run():
    discord.utils.setup_logging()
    if not all([
        settings.DISCORD_BOT_TOKEN,
        settings.MAIN_GUILD_ID,
        settings.INBOX_GUILD_ID,
        settings.MYSQL_HOST,
        settings.MYSQL_USER,
        settings.MYSQL_DATABASE,
    ]):
        logger.error("Required environment variables are missing (check the .env file)")
        logger.error(
            "Required: DISCORD_BOT_TOKEN, MAIN_GUILD_ID, INBOX_GUILD_ID, MYSQL_HOST, MYSQL_USER, MYSQL_DATABASE"
        )
        return
    client = ModmailClient()
    try:
        client.run(settings.DISCORD_BOT_TOKEN, log_handler=None)
    except discord.LoginFailure:
        logger.error("The Discord bot token is invalid")
