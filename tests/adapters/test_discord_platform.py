"""Tests for the Discord adapter — discord.py client replaced by mocks."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest

from multibot.adapters.discord import MESSAGE_LIMIT, DiscordMessagePlatform
from multibot.domain.dispatcher import Dispatcher
from multibot.domain.errors import (
    ChannelResolutionError,
    PlatformAuthError,
    SendError,
)
from multibot.domain.handlers import HandlerRegistry
from multibot.domain.models import Platform


def _client(user_id=42):
    client = MagicMock()
    client.user = SimpleNamespace(id=user_id)
    client.login = AsyncMock()
    client.close = AsyncMock()
    client.is_closed.return_value = False
    target = MagicMock()
    target.send = AsyncMock()
    client.get_partial_messageable.return_value = target
    return client, target


def _message(content, author_id=7, channel_id=100, message_id=555, attachments=()):
    return SimpleNamespace(
        content=content,
        id=message_id,
        author=SimpleNamespace(id=author_id),
        channel=SimpleNamespace(id=channel_id),
        attachments=list(attachments),
    )


class TestCreate:
    @pytest.mark.asyncio
    async def test_login_sets_bot_id(self):
        client, _ = _client(user_id=4242)
        with patch("multibot.adapters.discord._DiscordClient", return_value=client):
            platform = await DiscordMessagePlatform.create("token")
        client.login.assert_awaited_once_with("token")
        assert platform.bot_user_id == "4242"

    @pytest.mark.asyncio
    async def test_bad_token(self):
        client, _ = _client()
        client.login.side_effect = discord.LoginFailure("Improper token has been passed.")
        with patch("multibot.adapters.discord._DiscordClient", return_value=client):
            with pytest.raises(PlatformAuthError, match="Improper token"):
                await DiscordMessagePlatform.create("bad")
        client.close.assert_awaited_once()


class TestSend:
    @pytest.mark.asyncio
    async def test_numeric_channel(self):
        client, target = _client()
        platform = DiscordMessagePlatform("t", client=client)

        await platform.channel_message_send("100", "hi")

        client.get_partial_messageable.assert_called_once_with(100)
        target.send.assert_awaited_once_with("hi")

    @pytest.mark.asyncio
    async def test_channel_name_resolved_from_cache(self):
        client, target = _client()
        platform = DiscordMessagePlatform("t", client=client, default_channel="general")
        platform.channel_ids.put("general", "200")

        await platform.channel_message_send("", "hi")

        client.get_partial_messageable.assert_called_once_with(200)

    @pytest.mark.asyncio
    async def test_unknown_channel(self):
        client, _ = _client()
        client.is_ready.return_value = True
        client.get_all_channels.return_value = []
        platform = DiscordMessagePlatform("t", client=client)
        with pytest.raises(ChannelResolutionError):
            await platform.channel_message_send("nowhere", "hi")

    @pytest.mark.asyncio
    async def test_no_channel(self):
        client, _ = _client()
        with pytest.raises(ChannelResolutionError):
            await DiscordMessagePlatform("t", client=client).channel_message_send("", "hi")
        client.get_partial_messageable.assert_not_called()

    @pytest.mark.asyncio
    async def test_long_message_split(self):
        client, target = _client()
        await DiscordMessagePlatform("t", client=client).channel_message_send("1", "x" * (MESSAGE_LIMIT + 5))
        assert target.send.await_count == 2

    @pytest.mark.asyncio
    async def test_reply_references_message(self):
        client, target = _client()
        await DiscordMessagePlatform("t", client=client).send_reply("100", "answer", "555")
        reference = target.send.await_args.kwargs["reference"]
        assert reference.message_id == 555
        assert reference.channel_id == 100

    @pytest.mark.asyncio
    async def test_http_error(self):
        client, target = _client()
        target.send.side_effect = discord.HTTPException(MagicMock(status=403, reason="Forbidden"), "Missing Access")
        with pytest.raises(SendError):
            await DiscordMessagePlatform("t", client=client).channel_message_send("1", "hi")

    @pytest.mark.asyncio
    async def test_image_reply_uploads_file(self):
        client, target = _client()
        await DiscordMessagePlatform("t", client=client).send_image_reply("100", "caption", b"PNG")
        args, kwargs = target.send.await_args
        assert args == ("caption",)
        assert isinstance(kwargs["file"], discord.File)


class TestInbound:
    def test_to_inbound(self):
        attachment = SimpleNamespace(id=9, filename="cat.png")
        platform = DiscordMessagePlatform("t", client=_client()[0])
        inbound = platform.to_inbound(_message("hello", attachments=[attachment]))
        assert inbound.request.text == "hello"
        assert inbound.request.platform is Platform.DISCORD
        assert (inbound.request.channel_id, inbound.request.user_id) == ("100", "7")
        assert inbound.message_id == "555"
        assert inbound.attachments[0].ref is attachment
        assert inbound.attachments[0].name == "9-cat.png"

    @pytest.mark.asyncio
    async def test_hello_world(self):
        handlers = HandlerRegistry()
        handlers.on_text("hello", lambda: "World!")
        client, target = _client()
        platform = DiscordMessagePlatform("t", client=client, dispatcher=Dispatcher(handlers))

        sent = await platform.handle_message(_message("hello"))

        assert sent == 1
        assert target.send.await_args.args == ("World!",)

    @pytest.mark.asyncio
    async def test_own_message_ignored(self):
        handlers = HandlerRegistry()
        handlers.on_catchall(lambda r: "x")
        client, target = _client(user_id=7)
        platform = DiscordMessagePlatform("t", client=client, dispatcher=Dispatcher(handlers))
        assert await platform.handle_message(_message("hi", author_id=7)) == 0
        target.send.assert_not_awaited()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_twice(self):
        client, _ = _client()
        platform = DiscordMessagePlatform("t", client=client)
        await platform.close()
        await platform.close()
        client.close.assert_awaited_once()
