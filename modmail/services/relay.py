import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..domain.entities import IncomingMessage, MessageDirection, Thread, UserRef
from .formatting import disable_link_previews, with_attachments
from .task_queue import QueuedTask

logger = logging.getLogger(__name__)

UNKNOWN_OLD_CONTENT = "*Unavailable due to bot restart*"
DEFAULT_ROLE_NAME = "Moderator"


@dataclass
class RelayOptions:
    prefix: str = "!"
    snippet_prefix: str = "!!"
    always_reply: bool = False
    always_reply_anon: bool = False
    log_channel_id: Optional[int] = None


class RelayEngine:
    """Decides what to relay and what to log for every gateway event.

    Each ``handle_*`` method receives one event and either ignores it or
    performs the matching relay, log or thread action.
    """

    def __init__(self, store, blocklist, registry, queue, gateway, attachments, options: Optional[RelayOptions] = None):
        self.store = store
        self.blocklist = blocklist
        self.registry = registry
        self.queue = queue
        self.gateway = gateway
        self.attachments = attachments
        self.options = options or RelayOptions()

    def is_command(self, content: str) -> bool:
        return content.startswith(self.options.prefix) or content.startswith(self.options.snippet_prefix)

    async def _record(
        self,
        thread: Thread,
        direction: MessageDirection,
        author: Optional[UserRef],
        content: str,
        external_message_id: Optional[int] = None,
        attachment_refs: Sequence[str] = (),
        anonymous: bool = False,
    ):
        return await asyncio.to_thread(
            self.store.add_message,
            thread.id,
            direction,
            author.id if author else None,
            author.name if author else "",
            content,
            datetime.now(timezone.utc),
            external_message_id,
            list(attachment_refs),
            anonymous,
        )

    async def post_system_message(self, thread: Thread, text: str) -> None:
        message_id = await self.gateway.post(thread.channel_id, text)
        await self._record(thread, MessageDirection.SYSTEM, None, text, external_message_id=message_id)

    # staff side

    async def handle_staff_channel_message(self, msg: IncomingMessage) -> None:
        if not msg.on_inbox_guild or not msg.author_is_staff or msg.author.bot:
            return
        if self.is_command(msg.content):
            return

        thread = await self.registry.find_open_thread_by_channel(msg.channel_id)
        if not thread:
            return

        if self.options.always_reply:
            await self.reply(msg, msg.content.strip(), thread, anonymous=self.options.always_reply_anon)
        else:
            await self._record(
                thread,
                MessageDirection.STAFF_CHAT,
                msg.author,
                msg.content,
                external_message_id=msg.id,
                attachment_refs=[attachment.url for attachment in msg.attachments],
            )

    async def reply(self, msg: IncomingMessage, text: str, thread: Thread, anonymous: bool = False) -> bool:
        """Relay a staff reply to the thread's user and remove the invoking message."""
        if not text and not msg.attachments:
            return False

        refs = await self.attachments.capture(msg.attachments)
        role = msg.author_role or DEFAULT_ROLE_NAME
        if anonymous:
            dm_content = f"**{role}:** {text}"
            thread_content = f"**(Anonymous) ({role}) {msg.author.name}:** {text}"
        else:
            dm_content = f"**({role}) {msg.author.name}:** {text}"
            thread_content = dm_content

        dm_id = await self.gateway.send_dm(thread.user_id, with_attachments(dm_content, refs))
        await self._record(
            thread,
            MessageDirection.TO_USER,
            msg.author,
            text,
            external_message_id=dm_id,
            attachment_refs=refs,
            anonymous=anonymous,
        )
        await self.gateway.post(thread.channel_id, with_attachments(thread_content, refs))
        await self.gateway.delete_message(msg.channel_id, msg.id)
        return True

    # user side

    def handle_direct_message(self, msg: IncomingMessage) -> Optional[QueuedTask]:
        """Queue a DM for relaying. Returns the queued task, or None if ignored."""
        if not msg.is_private or msg.author.bot or not msg.is_default_type:
            return None
        if self.blocklist.is_blocked(msg.author.id):
            return None
        return self.queue.enqueue(lambda: self._receive_user_message(msg))

    async def _receive_user_message(self, msg: IncomingMessage) -> Thread:
        thread = await self.registry.find_or_create_thread_for_user(msg.author)
        refs = await self.attachments.capture(msg.attachments)
        await self._record(
            thread,
            MessageDirection.FROM_USER,
            msg.author,
            msg.content,
            external_message_id=msg.id,
            attachment_refs=refs,
        )
        await self.gateway.post(thread.channel_id, with_attachments(f"**{msg.author.name}:** {msg.content}", refs))
        return thread

    # edits, deletes, mentions

    async def handle_edit(self, old_content: Optional[str], msg: IncomingMessage) -> None:
        if msg.author.bot or self.blocklist.is_blocked(msg.author.id):
            return

        if old_content is None:
            old_content = UNKNOWN_OLD_CONTENT
        new_content = msg.content
        if new_content.strip() == old_content.strip():
            return

        if msg.is_private:
            thread = await self.registry.find_open_thread_by_user(msg.author.id)
            if not thread:
                return
            notice = disable_link_previews(
                f"**The user edited their message:**\n`B:` {old_content}\n`A:` {new_content}"
            )
            await self.post_system_message(thread, notice)
        elif msg.on_inbox_guild and msg.author_is_staff:
            thread = await self.registry.find_open_thread_by_channel(msg.channel_id)
            if not thread:
                return
            await asyncio.to_thread(self.store.update_message_content, thread.id, msg.id, new_content)

    async def handle_delete(self, msg: IncomingMessage) -> None:
        if msg.author.bot or not msg.on_inbox_guild or not msg.author_is_staff:
            return

        thread = await self.registry.find_open_thread_by_channel(msg.channel_id)
        if not thread:
            return
        await asyncio.to_thread(self.store.mark_message_deleted, thread.id, msg.id)

    async def handle_uncached_delete(self, channel_id: int, message_id: int) -> None:
        """Soft-delete staff chatter whose message was not in the client cache."""
        thread = await self.registry.find_open_thread_by_channel(channel_id)
        if not thread:
            return
        # Author is unknown here, so only staff chat rows may match.
        await asyncio.to_thread(
            self.store.mark_message_deleted, thread.id, message_id, MessageDirection.STAFF_CHAT
        )

    async def handle_main_space_mention(self, msg: IncomingMessage) -> None:
        if not msg.on_main_guild or not msg.mentions_bot:
            return
        if msg.author_in_inbox or self.blocklist.is_blocked(msg.author.id):
            return
        if self.options.log_channel_id is None:
            logger.warning("Bot mentioned by %s but no log channel is configured", msg.author.id)
            return

        await self.gateway.post(
            self.options.log_channel_id,
            f'@here Bot mentioned in <#{msg.channel_id}> by **{msg.author.name}**: "{msg.clean_content}"',
            mention_everyone=True,
        )
