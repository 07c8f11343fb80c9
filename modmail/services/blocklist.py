import asyncio
import logging
from datetime import datetime, timezone
from typing import Set

logger = logging.getLogger(__name__)


class Blocklist:
    """In-memory set of blocked user ids, written through to the store."""

    def __init__(self, store):
        self.store = store
        self._blocked: Set[int] = set()

    async def load(self) -> None:
        user_ids = await asyncio.to_thread(self.store.get_blocked_user_ids)
        self._blocked = set(user_ids)
        logger.info("Loaded %s blocked user(s)", len(self._blocked))

    def is_blocked(self, user_id: int) -> bool:
        return user_id in self._blocked

    async def block(self, user_id: int) -> bool:
        """Block a user. Returns False if they already were."""
        if user_id in self._blocked:
            return False
        await asyncio.to_thread(self.store.add_blocked_user, user_id, datetime.now(timezone.utc))
        self._blocked.add(user_id)
        logger.info("Blocked user %s", user_id)
        return True

    async def unblock(self, user_id: int) -> bool:
        if user_id not in self._blocked:
            return False
        await asyncio.to_thread(self.store.remove_blocked_user, user_id)
        self._blocked.discard(user_id)
        logger.info("Unblocked user %s", user_id)
        return True
