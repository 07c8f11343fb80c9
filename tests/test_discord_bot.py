from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from factories import dm, staff_message
from modmail import settings
from modmail.domain.entities import UserRef
from modmail.interfaces.discord_bot import ModmailClient, relay_options_from_settings

USER = UserRef(id=444444444444444444, name="Cy")


@pytest.fixture
def client():
    client = ModmailClient()
    client.state = MagicMock()
    client.state.engine.handle_staff_channel_message = AsyncMock()
    client.state.engine.handle_main_space_mention = AsyncMock()
    client.state.engine.handle_edit = AsyncMock()
    client.state.engine.handle_delete = AsyncMock()
    client.state.engine.handle_uncached_delete = AsyncMock()
    client.state.registry.find_open_thread_by_channel = AsyncMock(return_value="thread")
    return client


async def deliver(client, msg):
    with patch.object(ModmailClient, "to_incoming", return_value=msg):
        await client.on_message(MagicMock())


class TestEventRouting:
    @pytest.mark.asyncio
    async def test_direct_messages_go_to_the_queue_path(self, client):
        msg = dm(USER, "hello")

        await deliver(client, msg)

        client.state.engine.handle_direct_message.assert_called_once_with(msg)
        client.state.engine.handle_staff_channel_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_staff_commands_are_dispatched_with_resolved_thread(self, client):
        close = AsyncMock()
        client.state.commands = {"close": close}
        msg = staff_message(50, "!close")

        await deliver(client, msg)

        close.assert_awaited_once_with(msg, [], "thread")
        client.state.registry.find_open_thread_by_channel.assert_awaited_once_with(50)

    @pytest.mark.asyncio
    async def test_unknown_commands_are_ignored(self, client):
        client.state.commands = {}

        await deliver(client, staff_message(50, "!nope"))

        client.state.registry.find_open_thread_by_channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_main_guild_messages_go_to_mention_handler(self, client):
        msg = staff_message(60, "hey", on_inbox_guild=False, on_main_guild=True, author_is_staff=False)

        await deliver(client, msg)

        client.state.engine.handle_main_space_mention.assert_awaited_once_with(msg)

    @pytest.mark.asyncio
    async def test_handler_failure_is_logged_not_raised(self, client, caplog):
        client.state.engine.handle_staff_channel_message.side_effect = RuntimeError("store down")

        await deliver(client, staff_message(50, "note"))

        assert "Error while handling staff message" in caplog.text

    @pytest.mark.asyncio
    async def test_synchronous_handler_failure_is_isolated(self, client, caplog):
        client.state.engine.handle_direct_message.side_effect = ValueError("bad event")

        await deliver(client, dm(USER, "hello"))

        assert "Error while handling direct message" in caplog.text

    @pytest.mark.asyncio
    async def test_edit_passes_old_content(self, client):
        msg = dm(USER, "new")
        before = MagicMock(content="old")

        with patch.object(ModmailClient, "to_incoming", return_value=msg):
            await client.on_message_edit(before, MagicMock())

        client.state.engine.handle_edit.assert_awaited_once_with("old", msg)

    @pytest.mark.asyncio
    async def test_uncached_delete_in_inbox_is_routed(self, client):
        payload = MagicMock(cached_message=None, guild_id=1, channel_id=50, message_id=700)

        with patch.object(settings, "INBOX_GUILD_ID", 1):
            await client.on_raw_message_delete(payload)

        client.state.engine.handle_uncached_delete.assert_awaited_once_with(50, 700)

    @pytest.mark.asyncio
    async def test_cached_or_foreign_deletes_skip_the_raw_path(self, client):
        cached = MagicMock(cached_message=MagicMock(), guild_id=1, channel_id=50, message_id=700)
        foreign = MagicMock(cached_message=None, guild_id=2, channel_id=50, message_id=701)

        with patch.object(settings, "INBOX_GUILD_ID", 1):
            await client.on_raw_message_delete(cached)
            await client.on_raw_message_delete(foreign)

        client.state.engine.handle_uncached_delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_events_before_setup_are_ignored(self):
        client = ModmailClient()

        await client.on_message(MagicMock())
        await client.on_message_delete(MagicMock())
        await client.on_raw_message_delete(MagicMock(cached_message=None))


def test_non_members_are_never_staff():
    assert ModmailClient()._is_staff(MagicMock()) is False


def test_relay_options_follow_settings():
    with patch("modmail.interfaces.discord_bot.settings") as settings:
        settings.PREFIX = "?"
        settings.SNIPPET_PREFIX = "??"
        settings.ALWAYS_REPLY = True
        settings.ALWAYS_REPLY_ANON = False
        settings.LOG_CHANNEL_ID = 9

        options = relay_options_from_settings()

    assert (options.prefix, options.always_reply, options.log_channel_id) == ("?", True, 9)
