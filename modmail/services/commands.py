import logging
from typing import Awaitable, Callable, Dict, List, Optional

from ..domain.entities import IncomingMessage, Thread
from ..errors import ValidationError
from .formatting import chunk, format_log_date, parse_user_mention

logger = logging.getLogger(__name__)

CommandHandler = Callable[[IncomingMessage, List[str], Optional[Thread]], Awaitable[None]]

LOG_LINES_PER_MESSAGE = 15


def _target_user_id(args: List[str], thread: Optional[Thread]) -> Optional[int]:
    """User from a mention/id argument, else the thread's user."""
    if args:
        try:
            return parse_user_mention(" ".join(args))
        except ValidationError as e:
            logger.debug("Ignoring command argument: %s", e)
            return None
    if thread:
        return thread.user_id
    return None


def build_command_table(state) -> Dict[str, CommandHandler]:
    """Map command names and aliases to their handlers."""
    engine = state.engine
    registry = state.registry
    blocklist = state.blocklist
    gateway = state.gateway
    log_exporter = state.log_exporter
    queue = state.queue

    async def reply(msg: IncomingMessage, args: List[str], thread: Optional[Thread]) -> None:
        if not thread:
            return
        await engine.reply(msg, " ".join(args).strip(), thread, anonymous=False)

    async def anonreply(msg: IncomingMessage, args: List[str], thread: Optional[Thread]) -> None:
        if not thread:
            return
        await engine.reply(msg, " ".join(args).strip(), thread, anonymous=True)

    async def close(msg: IncomingMessage, args: List[str], thread: Optional[Thread]) -> None:
        if not thread:
            return
        # Ordered after any DM relay already queued for this thread.
        task = queue.enqueue(lambda: registry.close(thread))
        await task.wait()

    async def block(msg: IncomingMessage, args: List[str], thread: Optional[Thread]) -> None:
        user_id = _target_user_id(args, thread)
        if user_id is None:
            return
        await blocklist.block(user_id)
        await gateway.post(msg.channel_id, f"Blocked <@{user_id}> (id {user_id}) from modmail")

    async def unblock(msg: IncomingMessage, args: List[str], thread: Optional[Thread]) -> None:
        user_id = _target_user_id(args, thread)
        if user_id is None:
            return
        await blocklist.unblock(user_id)
        await gateway.post(msg.channel_id, f"Unblocked <@{user_id}> (id {user_id}) from modmail")

    async def logs(msg: IncomingMessage, args: List[str], thread: Optional[Thread]) -> None:
        user_id = _target_user_id(args, thread)
        if user_id is None:
            return

        user_threads = await registry.get_closed_threads_by_user(user_id)
        user_threads.reverse()
        lines = [f"**Log files for <@{user_id}>:**"]
        lines += [
            f"`{format_log_date(closed.created_at)}`: <{log_exporter.log_url(closed)}>"
            for closed in user_threads
        ]
        for part in chunk(lines, LOG_LINES_PER_MESSAGE):
            await gateway.post(msg.channel_id, "\n".join(part))

    return {
        "reply": reply,
        "r": reply,
        "anonreply": anonreply,
        "ar": anonreply,
        "close": close,
        "block": block,
        "unblock": unblock,
        "logs": logs,
    }


def parse_command(content: str, prefix: str):
    """Split ``!name arg arg`` into (name, args); None if not a command."""
    if not content.startswith(prefix):
        return None
    tokens = content[len(prefix):].split()
    if not tokens:
        return None
    return tokens[0].lower(), tokens[1:]
