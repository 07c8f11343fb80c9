from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import mysql.connector
import pytest

from modmail.domain.entities import MessageDirection, ThreadStatus
from modmail.errors import StoreError
from modmail.infrastructure.database import Database

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def connection():
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value = cursor
    with patch("modmail.infrastructure.database.mysql.connector.connect", return_value=conn) as connect:
        connect.cursor = cursor
        yield connect


@pytest.fixture
def db():
    return Database(host="db", user="bot", password="secret", database="modmail", port=3306)


class TestDatabase:
    def test_connect_uses_configured_credentials(self, db, connection):
        db.init_db()

        connection.assert_called_once_with(host="db", user="bot", password="secret", database="modmail", port=3306)
        assert connection.cursor.execute.call_count == 3
        connection.return_value.commit.assert_called_once()
        connection.return_value.close.assert_called_once()

    def test_connection_error_becomes_store_error(self, db):
        with patch(
            "modmail.infrastructure.database.mysql.connector.connect",
            side_effect=mysql.connector.Error("refused"),
        ):
            with pytest.raises(StoreError):
                db.find_open_thread_by_user(1)

    def test_query_error_rolls_back(self, db, connection):
        connection.cursor.execute.side_effect = mysql.connector.Error("duplicate")

        with pytest.raises(StoreError):
            db.create_thread(1, "Ann", 2, NOW)

        connection.return_value.rollback.assert_called_once()
        connection.return_value.commit.assert_not_called()

    def test_create_thread_returns_open_thread(self, db, connection):
        connection.cursor.lastrowid = 7

        thread = db.create_thread(1, "Ann", 2, NOW)

        assert (thread.id, thread.status, thread.channel_id) == (7, ThreadStatus.OPEN, 2)
        sql, params = connection.cursor.execute.call_args[0]
        assert sql.startswith("INSERT INTO threads")
        assert params[-1] == datetime(2024, 5, 1, 12, 0)

    def test_find_open_thread_maps_row(self, db, connection):
        connection.cursor.fetchone.return_value = {
            "id": 3,
            "user_id": 1,
            "user_name": "Ann",
            "channel_id": 2,
            "status": "OPEN",
            "created_at": datetime(2024, 5, 1, 12, 0),
            "closed_at": None,
        }

        thread = db.find_open_thread_by_channel(2)

        assert thread.id == 3
        assert thread.created_at == NOW
        connection.return_value.cursor.assert_called_with(dictionary=True)

    def test_close_thread_reports_whether_it_changed(self, db, connection):
        connection.cursor.rowcount = 0

        assert db.close_thread(3, NOW) is False

    def test_mark_message_deleted_can_filter_by_direction(self, db, connection):
        connection.cursor.rowcount = 1

        assert db.mark_message_deleted(3, 55, MessageDirection.STAFF_CHAT) is True

        query, params = connection.cursor.execute.call_args[0]
        assert query.endswith("AND direction = %s")
        assert params == (3, 55, "STAFF_CHAT")

    def test_add_message_serializes_attachment_refs(self, db, connection):
        connection.cursor.lastrowid = 11

        message = db.add_message(3, MessageDirection.TO_USER, 9, "mod", "hi", NOW, 55, ["u1"], True)

        params = connection.cursor.execute.call_args[0][1]
        assert params[2] == "TO_USER"
        assert params[6] == '["u1"]'
        assert params[8] == 1
        assert (message.id, message.anonymous) == (11, True)

    def test_get_thread_messages_maps_rows(self, db, connection):
        connection.cursor.fetchall.return_value = [{
            "id": 1,
            "thread_id": 3,
            "external_message_id": None,
            "direction": "SYSTEM",
            "author_id": None,
            "author_name": "",
            "content": "edited",
            "attachment_refs": "[]",
            "created_at": datetime(2024, 5, 1, 12, 0),
            "deleted": 0,
            "anonymous": 0,
        }]

        [message] = db.get_thread_messages(3)

        assert message.direction is MessageDirection.SYSTEM
        assert message.deleted is False
        assert message.attachment_refs == []

    def test_blocked_user_ids(self, db, connection):
        connection.cursor.fetchall.return_value = [(1,), (2,)]

        assert db.get_blocked_user_ids() == [1, 2]
