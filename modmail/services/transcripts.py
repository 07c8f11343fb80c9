import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .. import settings
from ..domain.entities import ChatMessage, MessageDirection, Thread

logger = logging.getLogger(__name__)

DIRECTION_LABELS = {
    MessageDirection.FROM_USER: "FROM USER",
    MessageDirection.TO_USER: "TO USER",
    MessageDirection.STAFF_CHAT: "CHAT",
    MessageDirection.SYSTEM: "SYSTEM",
}


def render_transcript(thread: Thread, messages: List[ChatMessage]) -> str:
    lines = [
        f"# Modmail thread #{thread.id} with {thread.user_name} ({thread.user_id})",
        f"# Opened {thread.created_at:%Y-%m-%d %H:%M:%S} UTC",
        "",
    ]
    for message in messages:
        label = DIRECTION_LABELS[message.direction]
        if message.anonymous:
            label += " (anonymous)"
        if message.deleted:
            label += " (deleted)"
        author = message.author_name or "system"
        line = f"[{message.created_at:%Y-%m-%d %H:%M:%S}] [{label}] {author}: {message.content}"
        for ref in message.attachment_refs:
            line += f"\n    attachment: {ref}"
        lines.append(line)
    return "\n".join(lines) + "\n"


class LogExporter:
    """Writes closed-thread transcripts to disk and builds their public URLs."""

    def __init__(self, store, logs_dir: Optional[Path] = None, url_base: Optional[str] = None):
        self.store = store
        self.logs_dir = Path(logs_dir or settings.LOGS_DIR)
        self.url_base = (url_base or settings.LOG_URL_BASE).rstrip("/")

    def log_path(self, thread: Thread) -> Path:
        return self.logs_dir / f"{thread.id}.txt"

    def log_url(self, thread: Thread) -> str:
        return f"{self.url_base}/logs/{thread.id}"

    def _write(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    async def export(self, thread: Thread) -> Path:
        messages = await asyncio.to_thread(self.store.get_thread_messages, thread.id)
        path = self.log_path(thread)
        await asyncio.to_thread(self._write, path, render_transcript(thread, messages))
        logger.info("Exported %s message(s) of thread %s to %s", len(messages), thread.id, path)
        return path
