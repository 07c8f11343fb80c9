import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Set

from ..domain.entities import Thread, ThreadStatus, UserRef
from ..errors import ExternalServiceError, StoreError
from .formatting import channel_name_for

logger = logging.getLogger(__name__)


class ThreadRegistry:
    """Looks up, creates and closes modmail threads.

    ``find_or_create_thread_for_user`` is a check-then-create and must only
    run as a task on the serial task queue.
    """

    def __init__(self, store, gateway, log_exporter):
        self.store = store
        self.gateway = gateway
        self.log_exporter = log_exporter
        self._closing: Set[int] = set()

    async def find_open_thread_by_user(self, user_id: int) -> Optional[Thread]:
        return await asyncio.to_thread(self.store.find_open_thread_by_user, user_id)

    async def find_open_thread_by_channel(self, channel_id: int) -> Optional[Thread]:
        return await asyncio.to_thread(self.store.find_open_thread_by_channel, channel_id)

    async def get_closed_threads_by_user(self, user_id: int) -> List[Thread]:
        """Closed threads of a user, oldest first."""
        return await asyncio.to_thread(self.store.get_closed_threads_by_user, user_id)

    async def find_or_create_thread_for_user(self, user: UserRef) -> Thread:
        thread = await self.find_open_thread_by_user(user.id)
        if thread:
            return thread

        channel_id = await self.gateway.create_channel(channel_name_for(user))
        # A crash between channel creation and this insert leaves an orphan channel.
        thread = await asyncio.to_thread(
            self.store.create_thread, user.id, user.name, channel_id, datetime.now(timezone.utc)
        )
        logger.info("Created thread %s for user %s in channel %s", thread.id, user.id, channel_id)
        await self._post_header(thread)
        return thread

    async def _post_header(self, thread: Thread) -> None:
        header = f"New modmail thread with **{thread.user_name}** (`{thread.user_id}`)"
        try:
            previous = await self.get_closed_threads_by_user(thread.user_id)
            if previous:
                header += f"\nThis user has **{len(previous)}** previous modmail log(s)."
            await self.gateway.post(thread.channel_id, header)
        except (ExternalServiceError, StoreError) as e:
            logger.warning("Could not post header in thread %s: %s", thread.id, e)

    async def close(self, thread: Thread) -> bool:
        """Close an open thread. Returns False if there was nothing to close."""
        if thread.status is ThreadStatus.CLOSED or thread.id in self._closing:
            return False

        self._closing.add(thread.id)
        try:
            closed_at = datetime.now(timezone.utc)
            changed = await asyncio.to_thread(self.store.close_thread, thread.id, closed_at)
            thread.status = ThreadStatus.CLOSED
            if not changed:
                return False
            thread.closed_at = closed_at

            try:
                await self.log_exporter.export(thread)
            except Exception as e:
                logger.warning("Log export for thread %s failed: %s", thread.id, e)

            await self.gateway.delete_channel(thread.channel_id)
            logger.info("Closed thread %s of user %s", thread.id, thread.user_id)
            return True
        finally:
            self._closing.discard(thread.id)
