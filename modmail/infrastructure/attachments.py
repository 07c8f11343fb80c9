import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence

import aiohttp

from .. import settings
from ..domain.entities import AttachmentRef

logger = logging.getLogger(__name__)


class AttachmentStore:
    """Copies Discord attachments to local disk before their CDN URLs expire."""

    def __init__(self, directory: Optional[Path] = None, url_base: Optional[str] = None, timeout: float = 30.0):
        self.directory = Path(directory or settings.ATTACHMENTS_DIR)
        self.url_base = (url_base or settings.ATTACHMENT_URL_BASE).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    def path_for(self, attachment: AttachmentRef) -> Path:
        return self.directory / str(attachment.id) / Path(attachment.filename).name

    def url_for(self, attachment: AttachmentRef) -> str:
        return f"{self.url_base}/attachments/{attachment.id}/{Path(attachment.filename).name}"

    async def download(self, attachment: AttachmentRef) -> bytes:
        async with self._get_session().get(attachment.url) as response:
            response.raise_for_status()
            return await response.read()

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def save(self, attachment: AttachmentRef) -> str:
        data = await self.download(attachment)
        await asyncio.to_thread(self._write, self.path_for(attachment), data)
        return self.url_for(attachment)

    async def capture(self, attachments: Sequence[AttachmentRef]) -> List[str]:
        """Persist each attachment; fall back to the original URL on failure."""
        refs = []
        for attachment in attachments:
            try:
                refs.append(await self.save(attachment))
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning("Could not save attachment %s (%s): %s", attachment.id, attachment.url, e)
                refs.append(attachment.url)
        return refs

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
