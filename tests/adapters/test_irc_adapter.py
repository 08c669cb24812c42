"""Tests for the IRC adapter — line parser and client over in-memory streams."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from multibot.adapters.irc import IrcMessagePlatform, parse_line
from multibot.config import BackoffPolicy, IrcConfig
from multibot.domain.dispatcher import Dispatcher
from multibot.domain.errors import (
    ChannelResolutionError,
    DecodeError,
    PlatformAuthError,
    PlatformConnectError,
)
from multibot.domain.handlers import HandlerRegistry
from multibot.domain.models import Platform

CONFIG = IrcConfig(host="irc.example.net", nick="multibot", password="secret", channel="#bots")


def _writer():
    writer = MagicMock()
    writer.drain = AsyncMock()
    writer.wait_closed = AsyncMock()
    return writer


def _written(writer):
    return [call.args[0].decode().rstrip("\r\n") for call in writer.write.call_args_list]


def _reader(*lines):
    reader = asyncio.StreamReader()
    for line in lines:
        reader.feed_data(line.encode() + b"\r\n")
    reader.feed_eof()
    return reader


class TestParseLine:
    def test_privmsg(self):
        msg = parse_line(":alice!al@host PRIVMSG #bots :hello there\r\n")
        assert msg.command == "PRIVMSG"
        assert msg.nick == "alice"
        assert msg.params == ["#bots", "hello there"]
        assert msg.trailing == "hello there"

    def test_ping_without_prefix(self):
        msg = parse_line("PING :irc.example.net")
        assert msg.command == "PING"
        assert msg.prefix == ""
        assert msg.trailing == "irc.example.net"

    def test_numeric_with_middle_params(self):
        msg = parse_line(":server 001 multibot :Welcome to IRC")
        assert msg.command == "001"
        assert msg.params == ["multibot", "Welcome to IRC"]

    def test_tags_skipped(self):
        msg = parse_line("@time=2024-01-01T00:00:00Z :bob PRIVMSG multibot :hi")
        assert msg.nick == "bob"
        assert msg.params == ["multibot", "hi"]

    def test_lowercase_command_normalized(self):
        assert parse_line("privmsg #a :x").command == "PRIVMSG"

    def test_colon_inside_trailing(self):
        assert parse_line(":a PRIVMSG #c :see: this").trailing == "see: this"

    @pytest.mark.parametrize("line", ["", "\r\n", ":prefixonly"])
    def test_invalid(self, line):
        with pytest.raises(DecodeError):
            parse_line(line)


class TestCreate:
    @pytest.mark.asyncio
    async def test_register_and_join(self):
        writer = _writer()
        reader = _reader("PING :abc", ":server 001 multibot :Welcome")
        with patch("multibot.adapters.irc.asyncio.open_connection", AsyncMock(return_value=(reader, writer))):
            platform = await IrcMessagePlatform.create(CONFIG)

        assert _written(writer) == [
            "PASS secret",
            "NICK multibot",
            "USER multibot 0 * :multibot",
            "PONG :abc",
            "JOIN #bots",
        ]
        assert platform.bot_user_id == "multibot"
        assert platform.default_channel == "#bots"
        assert platform.platform is Platform.IRC

    @pytest.mark.asyncio
    async def test_nick_in_use(self):
        writer = _writer()
        reader = _reader(":server 433 * multibot :Nickname is already in use", ":server 001 multibot_ :Welcome")
        with patch("multibot.adapters.irc.asyncio.open_connection", AsyncMock(return_value=(reader, writer))):
            platform = await IrcMessagePlatform.create(IrcConfig(host="h", nick="multibot"))
        assert "NICK multibot_" in _written(writer)
        assert platform.nick == "multibot_"

    @pytest.mark.asyncio
    async def test_bad_password(self):
        writer = _writer()
        reader = _reader(":server 464 multibot :Password incorrect")
        with patch("multibot.adapters.irc.asyncio.open_connection", AsyncMock(return_value=(reader, writer))):
            with pytest.raises(PlatformAuthError, match="Password incorrect"):
                await IrcMessagePlatform.create(CONFIG)
        writer.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        with patch("multibot.adapters.irc.asyncio.open_connection", AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(PlatformConnectError, match="refused"):
                await IrcMessagePlatform.create(CONFIG)

    @pytest.mark.asyncio
    async def test_closed_during_registration(self):
        writer = _writer()
        with patch("multibot.adapters.irc.asyncio.open_connection", AsyncMock(return_value=(_reader(), writer))):
            with pytest.raises(PlatformConnectError):
                await IrcMessagePlatform.create(CONFIG)


class TestMessages:
    @pytest.mark.asyncio
    async def test_channel_message_answered(self):
        handlers = HandlerRegistry()
        handlers.on_text("o/", lambda: "\\o")
        writer = _writer()
        platform = IrcMessagePlatform(
            CONFIG, _reader(":alice!a@h PRIVMSG #bots :o/"), writer, dispatcher=Dispatcher(handlers)
        )
        platform.joined.add("#bots")

        await platform.process_messages()

        assert _written(writer) == ["PRIVMSG #bots :\\o"]

    @pytest.mark.asyncio
    async def test_private_message_answered_to_sender(self):
        handlers = HandlerRegistry()
        handlers.on_text("hello", lambda: "World!")
        writer = _writer()
        platform = IrcMessagePlatform(CONFIG, _reader(), writer, dispatcher=Dispatcher(handlers))

        await platform.handle_line(":alice!a@h PRIVMSG multibot :hello")

        assert _written(writer) == ["PRIVMSG alice :World!"]

    @pytest.mark.asyncio
    async def test_own_message_ignored(self):
        handlers = HandlerRegistry()
        handlers.on_catchall(lambda r: "x")
        writer = _writer()
        platform = IrcMessagePlatform(CONFIG, _reader(), writer, dispatcher=Dispatcher(handlers))
        assert await platform.handle_line(":multibot!m@h PRIVMSG #bots :x") == 0
        writer.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_ping_answered(self):
        writer = _writer()
        platform = IrcMessagePlatform(CONFIG, _reader(), writer)
        await platform.handle_line("PING :token123")
        assert _written(writer) == ["PONG :token123"]

    @pytest.mark.asyncio
    async def test_send_joins_unjoined_channel_and_splits_lines(self):
        writer = _writer()
        platform = IrcMessagePlatform(CONFIG, _reader(), writer)

        await platform.channel_message_send("general", "one\ntwo")

        assert _written(writer) == ["JOIN #general", "PRIVMSG #general :one", "PRIVMSG #general :two"]

    @pytest.mark.asyncio
    async def test_default_channel(self):
        writer = _writer()
        platform = IrcMessagePlatform(CONFIG, _reader(), writer)
        platform.joined.add("#bots")
        await platform.send("hi")
        assert _written(writer) == ["PRIVMSG #bots :hi"]

    @pytest.mark.asyncio
    async def test_empty_nick_rejected(self):
        writer = _writer()
        platform = IrcMessagePlatform(CONFIG, _reader(), writer)
        with pytest.raises(ChannelResolutionError):
            await platform.channel_message_send("@", "hi")
        writer.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_eof_ends_loop(self):
        platform = IrcMessagePlatform(CONFIG, _reader(), _writer())
        await asyncio.wait_for(platform.process_messages(), timeout=1)


class TestClose:
    @pytest.mark.asyncio
    async def test_close_twice_sends_quit_once(self):
        writer = _writer()
        platform = IrcMessagePlatform(CONFIG, _reader(), writer)
        await platform.close()
        await platform.close()
        assert _written(writer) == ["QUIT :bye"]
        writer.close.assert_called_once()


class TestReceiveLoop:
    def _platform(self, reader, writer):
        handlers = HandlerRegistry()
        handlers.on_text("hello", lambda: "World!")
        platform = IrcMessagePlatform(
            CONFIG, reader, writer, dispatcher=Dispatcher(handlers), backoff=BackoffPolicy(delay=0)
        )
        platform.joined.add("#bots")
        return platform

    @pytest.mark.asyncio
    async def test_oversized_line_dropped(self):
        reader = asyncio.StreamReader(limit=1024)
        reader.feed_data(b":alice!a@h PRIVMSG #bots :" + b"x" * 5000 + b"\r\n")
        reader.feed_data(b":alice!a@h PRIVMSG #bots :hello\r\n")
        reader.feed_eof()
        writer = _writer()

        await asyncio.wait_for(self._platform(reader, writer).process_messages(), timeout=1)

        assert _written(writer) == ["PRIVMSG #bots :World!"]

    @pytest.mark.asyncio
    async def test_unparseable_line_dropped(self):
        writer = _writer()
        reader = _reader(":prefixonly", ":alice!a@h PRIVMSG #bots :hello")

        await asyncio.wait_for(self._platform(reader, writer).process_messages(), timeout=1)

        assert _written(writer) == ["PRIVMSG #bots :World!"]

    @pytest.mark.asyncio
    async def test_failing_line_does_not_end_loop(self):
        writer = _writer()
        reader = _reader("PING :one", ":alice!a@h PRIVMSG #bots :hello")
        writer.drain.side_effect = [ConnectionResetError("pong lost"), None]

        await asyncio.wait_for(self._platform(reader, writer).process_messages(), timeout=1)

        assert _written(writer) == ["PONG :one", "PRIVMSG #bots :World!"]

    @pytest.mark.asyncio
    async def test_bounded_retries_give_up(self):
        reader = asyncio.StreamReader(limit=16)
        reader.feed_data(b"y" * 100 + b"\r\n")
        reader.feed_data(b"z" * 100 + b"\r\n")
        writer = _writer()
        platform = IrcMessagePlatform(CONFIG, reader, writer, backoff=BackoffPolicy(delay=0, max_retries=1))

        await asyncio.wait_for(platform.process_messages(), timeout=1)

        writer.write.assert_not_called()
