from datetime import datetime, timedelta, timezone

import pytest

from modmail.domain.entities import UserRef
from modmail.errors import ValidationError
from modmail.services.formatting import (
    channel_name_for,
    chunk,
    disable_link_previews,
    format_log_date,
    parse_user_mention,
    split_message,
    with_attachments,
)


def test_split_message_keeps_short_text_whole():
    assert split_message("x" * 2000) == ["x" * 2000]


def test_split_message_splits_long_text():
    parts = split_message("y" * 4500)

    assert [len(p) for p in parts] == [1990, 1990, 520]
    assert "".join(parts) == "y" * 4500


def test_chunk():
    assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("<@123456789012345678>", 123456789012345678),
        ("<@!123456789012345678>", 123456789012345678),
        (" 123456789012345678 ", 123456789012345678),
    ],
)
def test_parse_user_mention(text, expected):
    assert parse_user_mention(text) == expected


@pytest.mark.parametrize("text", ["", "bob", "<#123456789012345678>", "12"])
def test_parse_user_mention_rejects_garbage(text):
    with pytest.raises(ValidationError):
        parse_user_mention(text)


def test_disable_link_previews_wraps_bare_urls_only():
    text = "a https://x.test/1 and <https://x.test/2>"

    assert disable_link_previews(text) == "a <https://x.test/1> and <https://x.test/2>"


def test_format_log_date_uses_utc_and_ordinals():
    plus_two = timezone(timedelta(hours=2))

    assert format_log_date(datetime(2024, 6, 22, 1, 5, tzinfo=plus_two)) == "Jun 21st at 23:05 UTC"
    assert format_log_date(datetime(2024, 6, 12, 8, 0)) == "Jun 12th at 08:00 UTC"
    assert format_log_date(datetime(2024, 6, 3, 8, 0)) == "Jun 3rd at 08:00 UTC"


def test_channel_name_for_strips_unsupported_characters():
    assert channel_name_for(UserRef(id=123456789012345678, name="Jo Ann!")) == "jo-ann-5678"
    assert channel_name_for(UserRef(id=123456789012340001, name="???")) == "user-0001"


def test_with_attachments():
    assert with_attachments("hi", []) == "hi"
    assert with_attachments("", ["u1"]) == "**Attachment:** u1"
    assert with_attachments("hi", ["u1", "u2"]) == "hi\n\n**Attachment:** u1\n**Attachment:** u2"
