import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from .blocklist import Blocklist
from .commands import CommandHandler, build_command_table
from .relay import RelayEngine, RelayOptions
from .task_queue import SerialTaskQueue
from .thread_registry import ThreadRegistry
from .transcripts import LogExporter

logger = logging.getLogger(__name__)


@dataclass
class ModmailState:
    """Everything the bot keeps for the lifetime of one process."""

    store: object
    gateway: object
    attachments: object
    blocklist: Blocklist
    queue: SerialTaskQueue
    log_exporter: LogExporter
    registry: ThreadRegistry
    engine: RelayEngine
    commands: Dict[str, CommandHandler] = field(default_factory=dict)

    @classmethod
    def build(cls, store, gateway, attachments, options: Optional[RelayOptions] = None, log_exporter: Optional[LogExporter] = None):
        blocklist = Blocklist(store)
        queue = SerialTaskQueue("dm")
        log_exporter = log_exporter or LogExporter(store)
        registry = ThreadRegistry(store, gateway, log_exporter)
        engine = RelayEngine(store, blocklist, registry, queue, gateway, attachments, options)
        state = cls(
            store=store,
            gateway=gateway,
            attachments=attachments,
            blocklist=blocklist,
            queue=queue,
            log_exporter=log_exporter,
            registry=registry,
            engine=engine,
        )
        state.commands = build_command_table(state)
        return state

    async def start(self) -> None:
        await asyncio.to_thread(self.store.init_db)
        await self.blocklist.load()
        logger.info("Modmail state ready")

    async def shutdown(self) -> None:
        await self.queue.shutdown()
        await self.attachments.close()
        logger.info("Modmail state torn down")
