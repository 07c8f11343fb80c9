import re
from datetime import datetime, timezone
from typing import List, Sequence, TypeVar

from ..domain.entities import UserRef
from ..errors import ValidationError

T = TypeVar("T")

DISCORD_MESSAGE_LIMIT = 2000
DISCORD_CHUNK_SIZE = 1990

_MENTION_RE = re.compile(r"^<@!?(\d+)>$")
_ID_RE = re.compile(r"^\d{15,21}$")
_URL_RE = re.compile(r"(?<!<)(https?://\S+)")
_CHANNEL_NAME_RE = re.compile(r"[^a-z0-9_-]+")


def split_message(text: str) -> List[str]:
    """Split text into pieces Discord will accept in a single message."""
    if len(text) <= DISCORD_MESSAGE_LIMIT:
        return [text]
    return [text[i:i + DISCORD_CHUNK_SIZE] for i in range(0, len(text), DISCORD_CHUNK_SIZE)]


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def disable_link_previews(text: str) -> str:
    return _URL_RE.sub(r"<\1>", text)


def parse_user_mention(text: str) -> int:
    """Return the user id in ``<@id>``, ``<@!id>`` or a bare id."""
    text = text.strip()
    match = _MENTION_RE.match(text)
    if match:
        return int(match.group(1))
    if _ID_RE.match(text):
        return int(text)
    raise ValidationError(f"Not a user mention or id: {text!r}")


def channel_name_for(user: UserRef) -> str:
    name = _CHANNEL_NAME_RE.sub("", user.name.lower().replace(" ", "-"))
    return (name or "user")[:90] + f"-{str(user.id)[-4:]}"


def _ordinal(day: int) -> str:
    if 10 <= day % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def format_log_date(value: datetime) -> str:
    """e.g. ``Mar 3rd at 14:05 UTC``"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return f"{value:%b} {_ordinal(value.day)} at {value:%H:%M} UTC"


def format_attachment_lines(refs: Sequence[str]) -> str:
    return "\n".join(f"**Attachment:** {ref}" for ref in refs)


def with_attachments(content: str, refs: Sequence[str]) -> str:
    if not refs:
        return content
    lines = format_attachment_lines(refs)
    return f"{content}\n\n{lines}" if content else lines
