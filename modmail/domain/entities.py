from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class ThreadStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class MessageDirection(str, Enum):
    TO_USER = "TO_USER"
    FROM_USER = "FROM_USER"
    STAFF_CHAT = "STAFF_CHAT"
    SYSTEM = "SYSTEM"


@dataclass
class Thread:
    id: int
    user_id: int
    channel_id: int
    status: ThreadStatus
    created_at: datetime
    closed_at: Optional[datetime] = None
    user_name: str = ""

    @property
    def is_open(self) -> bool:
        return self.status is ThreadStatus.OPEN


@dataclass
class ChatMessage:
    id: int
    thread_id: int
    direction: MessageDirection
    author_id: Optional[int]
    content: str
    created_at: datetime
    external_message_id: Optional[int] = None
    author_name: str = ""
    attachment_refs: List[str] = field(default_factory=list)
    deleted: bool = False
    anonymous: bool = False


@dataclass
class BlockedUser:
    user_id: int
    blocked_at: datetime


@dataclass(frozen=True)
class UserRef:
    id: int
    name: str
    bot: bool = False


@dataclass(frozen=True)
class AttachmentRef:
    id: int
    filename: str
    url: str


@dataclass
class IncomingMessage:
    """A gateway message reduced to what the relay needs to route it."""

    id: int
    channel_id: int
    author: UserRef
    content: str
    attachments: List[AttachmentRef] = field(default_factory=list)
    clean_content: str = ""
    is_private: bool = False
    on_inbox_guild: bool = False
    on_main_guild: bool = False
    author_is_staff: bool = False
    author_in_inbox: bool = False
    author_role: Optional[str] = None
    mentions_bot: bool = False
    is_default_type: bool = True
