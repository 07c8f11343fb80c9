from __future__ import annotations
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence

import mysql.connector

from .. import settings
from ..domain.entities import ChatMessage, MessageDirection, Thread, ThreadStatus
from ..errors import StoreError

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS threads (
        id INT AUTO_INCREMENT PRIMARY KEY,
        user_id BIGINT NOT NULL,
        user_name VARCHAR(128) NOT NULL DEFAULT '',
        channel_id BIGINT NOT NULL,
        status VARCHAR(10) NOT NULL DEFAULT 'OPEN',
        created_at DATETIME(6) NOT NULL,
        closed_at DATETIME(6) NULL,
        open_user_id BIGINT AS (IF(status = 'OPEN', user_id, NULL)) STORED,
        open_channel_id BIGINT AS (IF(status = 'OPEN', channel_id, NULL)) STORED,
        UNIQUE KEY uq_threads_open_user (open_user_id),
        UNIQUE KEY uq_threads_open_channel (open_channel_id),
        KEY ix_threads_user (user_id)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id INT AUTO_INCREMENT PRIMARY KEY,
        thread_id INT NOT NULL,
        external_message_id BIGINT NULL,
        direction VARCHAR(16) NOT NULL,
        author_id BIGINT NULL,
        author_name VARCHAR(128) NOT NULL DEFAULT '',
        content TEXT NOT NULL,
        attachment_refs TEXT NOT NULL,
        created_at DATETIME(6) NOT NULL,
        deleted TINYINT(1) NOT NULL DEFAULT 0,
        anonymous TINYINT(1) NOT NULL DEFAULT 0,
        KEY ix_chat_messages_external (external_message_id),
        FOREIGN KEY (thread_id) REFERENCES threads(id)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
    """,
    """
    CREATE TABLE IF NOT EXISTS blocked_users (
        user_id BIGINT PRIMARY KEY,
        blocked_at DATETIME(6) NOT NULL
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
    """,
)

THREAD_COLUMNS = "id, user_id, user_name, channel_id, status, created_at, closed_at"
MESSAGE_COLUMNS = (
    "id, thread_id, external_message_id, direction, author_id, author_name, "
    "content, attachment_refs, created_at, deleted, anonymous"
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _row_to_thread(row: dict) -> Thread:
    return Thread(
        id=row["id"],
        user_id=row["user_id"],
        channel_id=row["channel_id"],
        status=ThreadStatus(row["status"]),
        created_at=_utc(row["created_at"]),
        closed_at=_utc(row["closed_at"]),
        user_name=row["user_name"],
    )


def _row_to_message(row: dict) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        thread_id=row["thread_id"],
        external_message_id=row["external_message_id"],
        direction=MessageDirection(row["direction"]),
        author_id=row["author_id"],
        author_name=row["author_name"],
        content=row["content"],
        attachment_refs=json.loads(row["attachment_refs"] or "[]"),
        created_at=_utc(row["created_at"]),
        deleted=bool(row["deleted"]),
        anonymous=bool(row["anonymous"]),
    )


class Database:
    """MySQL-backed store for threads, chat messages and the blocklist.

    Every method opens its own connection and is blocking; async callers run
    them through ``asyncio.to_thread``.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        database: Optional[str] = None,
        port: Optional[int] = None,
    ):
        self.host = host or settings.MYSQL_HOST
        self.user = user or settings.MYSQL_USER
        self.password = password if password is not None else settings.MYSQL_PASSWORD
        self.database = database or settings.MYSQL_DATABASE
        self.port = port or settings.MYSQL_PORT

    def get_db_connection(self):
        """Get a MySQL database connection."""
        try:
            return mysql.connector.connect(
                host=self.host,
                user=self.user,
                password=self.password,
                database=self.database,
                port=self.port,
            )
        except mysql.connector.Error as err:
            raise StoreError(f"MySQL connection error: {err}") from err

    @contextmanager
    def _cursor(self, dictionary: bool = False) -> Iterator:
        conn = self.get_db_connection()
        cursor = conn.cursor(dictionary=dictionary)
        try:
            yield cursor
            conn.commit()
        except mysql.connector.Error as err:
            conn.rollback()
            raise StoreError(str(err)) from err
        finally:
            cursor.close()
            conn.close()

    def init_db(self) -> None:
        """Initialize database tables if they do not exist."""
        with self._cursor() as cursor:
            for statement in SCHEMA:
                cursor.execute(statement)
        logger.info("Database tables are ready")

    # threads

    def create_thread(self, user_id: int, user_name: str, channel_id: int, created_at: datetime) -> Thread:
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT INTO threads (user_id, user_name, channel_id, status, created_at) "
                "VALUES (%s, %s, %s, %s, %s)",
                (user_id, user_name, channel_id, ThreadStatus.OPEN.value, _naive(created_at)),
            )
            thread_id = cursor.lastrowid
        return Thread(
            id=thread_id,
            user_id=user_id,
            channel_id=channel_id,
            status=ThreadStatus.OPEN,
            created_at=created_at,
            user_name=user_name,
        )

    def _find_one_thread(self, where: str, params: Sequence) -> Optional[Thread]:
        with self._cursor(dictionary=True) as cursor:
            cursor.execute(f"SELECT {THREAD_COLUMNS} FROM threads WHERE {where} LIMIT 1", params)
            row = cursor.fetchone()
        return _row_to_thread(row) if row else None

    def find_open_thread_by_user(self, user_id: int) -> Optional[Thread]:
        return self._find_one_thread("user_id = %s AND status = 'OPEN'", (user_id,))

    def find_open_thread_by_channel(self, channel_id: int) -> Optional[Thread]:
        return self._find_one_thread("channel_id = %s AND status = 'OPEN'", (channel_id,))

    def get_closed_threads_by_user(self, user_id: int) -> List[Thread]:
        with self._cursor(dictionary=True) as cursor:
            cursor.execute(
                f"SELECT {THREAD_COLUMNS} FROM threads WHERE user_id = %s AND status = 'CLOSED' "
                "ORDER BY created_at ASC, id ASC",
                (user_id,),
            )
            rows = cursor.fetchall()
        return [_row_to_thread(row) for row in rows]

    def close_thread(self, thread_id: int, closed_at: datetime) -> bool:
        """Mark a thread closed. Returns False when it was not open."""
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE threads SET status = 'CLOSED', closed_at = %s WHERE id = %s AND status = 'OPEN'",
                (_naive(closed_at), thread_id),
            )
            return cursor.rowcount == 1

    # chat messages

    def add_message(
        self,
        thread_id: int,
        direction: MessageDirection,
        author_id: Optional[int],
        author_name: str,
        content: str,
        created_at: datetime,
        external_message_id: Optional[int] = None,
        attachment_refs: Sequence[str] = (),
        anonymous: bool = False,
    ) -> ChatMessage:
        refs = list(attachment_refs)
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT INTO chat_messages (thread_id, external_message_id, direction, author_id, "
                "author_name, content, attachment_refs, created_at, anonymous) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    thread_id,
                    external_message_id,
                    direction.value,
                    author_id,
                    author_name,
                    content,
                    json.dumps(refs),
                    _naive(created_at),
                    int(anonymous),
                ),
            )
            message_id = cursor.lastrowid
        return ChatMessage(
            id=message_id,
            thread_id=thread_id,
            external_message_id=external_message_id,
            direction=direction,
            author_id=author_id,
            author_name=author_name,
            content=content,
            attachment_refs=refs,
            created_at=created_at,
            anonymous=anonymous,
        )

    def update_message_content(self, thread_id: int, external_message_id: int, content: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE chat_messages SET content = %s WHERE thread_id = %s AND external_message_id = %s",
                (content, thread_id, external_message_id),
            )
            return cursor.rowcount > 0

    def mark_message_deleted(
        self, thread_id: int, external_message_id: int, direction: Optional[MessageDirection] = None
    ) -> bool:
        query = "UPDATE chat_messages SET deleted = 1 WHERE thread_id = %s AND external_message_id = %s"
        params = [thread_id, external_message_id]
        if direction is not None:
            query += " AND direction = %s"
            params.append(direction.value)
        with self._cursor() as cursor:
            cursor.execute(query, tuple(params))
            return cursor.rowcount > 0

    def get_thread_messages(self, thread_id: int) -> List[ChatMessage]:
        with self._cursor(dictionary=True) as cursor:
            cursor.execute(
                f"SELECT {MESSAGE_COLUMNS} FROM chat_messages WHERE thread_id = %s ORDER BY created_at ASC, id ASC",
                (thread_id,),
            )
            rows = cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    # blocklist

    def get_blocked_user_ids(self) -> List[int]:
        with self._cursor() as cursor:
            cursor.execute("SELECT user_id FROM blocked_users")
            return [row[0] for row in cursor.fetchall()]

    def add_blocked_user(self, user_id: int, blocked_at: datetime) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT IGNORE INTO blocked_users (user_id, blocked_at) VALUES (%s, %s)",
                (user_id, _naive(blocked_at)),
            )

    def remove_blocked_user(self, user_id: int) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM blocked_users WHERE user_id = %s", (user_id,))
