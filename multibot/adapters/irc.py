"""IRC adapter — a plain RFC 1459 client on asyncio streams."""

import asyncio
import ssl
from dataclasses import dataclass, field
from typing import List, Optional

from multibot.adapters.base import BasePlatform, split_message
from multibot.config import BackoffPolicy, IrcConfig
from multibot.domain.dispatcher import Dispatcher
from multibot.domain.errors import (
    ChannelResolutionError,
    DecodeError,
    PlatformAuthError,
    PlatformConnectError,
    SendError,
)
from multibot.domain.models import InboundEvent, Platform, Request

# Leaves room for the ":nick!user@host PRIVMSG #chan :" prefix within 512 bytes
MESSAGE_LIMIT = 400
REGISTER_TIMEOUT = 30.0


@dataclass
class IrcMessage:
    command: str
    prefix: str = ""
    params: List[str] = field(default_factory=list)

    @property
    def nick(self) -> str:
        return self.prefix.split("!", 1)[0]

    @property
    def trailing(self) -> str:
        return self.params[-1] if self.params else ""


def parse_line(line: str) -> IrcMessage:
    """Parse one protocol line (without CRLF). Raises DecodeError on empty input."""
    line = line.rstrip("\r\n")
    if not line:
        raise DecodeError("empty line", platform="irc")
    if line.startswith("@"):
        # IRCv3 message tags are not used
        _, _, line = line.partition(" ")
    prefix = ""
    if line.startswith(":"):
        prefix, _, line = line[1:].partition(" ")
    trailing = None
    if " :" in line:
        line, trailing = line.split(" :", 1)
    elif line.startswith(":"):
        line, trailing = "", line[1:]
    parts = line.split()
    if not parts:
        raise DecodeError(f"no command in line {line!r}", platform="irc")
    params = parts[1:]
    if trailing is not None:
        params.append(trailing)
    return IrcMessage(command=parts[0].upper(), prefix=prefix, params=params)


class IrcMessagePlatform(BasePlatform):
    """Implements MessagePlatform for a single IRC server connection."""

    platform = Platform.IRC

    def __init__(
        self,
        config: IrcConfig,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
    ):
        super().__init__(
            dispatcher=dispatcher,
            default_channel=default_channel or config.channel,
            backoff=backoff,
        )
        self.config = config
        self.nick = config.nick
        self._bot_user_id = config.nick
        self._reader = reader
        self._writer = writer
        self._write_lock = asyncio.Lock()
        self.joined = set()
        self._discarding = False

    @classmethod
    async def create(
        cls,
        config: IrcConfig,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
        timeout: float = REGISTER_TIMEOUT,
    ) -> "IrcMessagePlatform":
        """Connect, register and join the configured channel."""
        ssl_ctx = ssl.create_default_context() if config.tls else None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(config.host, config.port, ssl=ssl_ctx), timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise PlatformConnectError(
                f"cannot reach {config.host}:{config.port}: {e or type(e).__name__}", platform="irc"
            ) from e

        platform = cls(config, reader, writer, dispatcher=dispatcher, default_channel=default_channel, backoff=backoff)
        try:
            await asyncio.wait_for(platform._register(), timeout)
        except asyncio.TimeoutError as e:
            await platform._drop()
            raise PlatformConnectError("timed out waiting for registration", platform="irc") from e
        except Exception:
            await platform._drop()
            raise
        if config.channel:
            await platform.join(config.channel)
        platform.log(f"registered on {config.host} as {platform.nick}")
        return platform

    async def _register(self):
        if self.config.password:
            await self.write(f"PASS {self.config.password}")
        await self.write(f"NICK {self.nick}")
        await self.write(f"USER {self.nick} 0 * :{self.nick}")
        while True:
            try:
                line = await self._read_line()
            except DecodeError:
                continue
            if line is None:
                raise PlatformConnectError("connection closed during registration", platform="irc")
            try:
                msg = parse_line(line.decode("utf-8", errors="replace"))
            except DecodeError:
                continue
            if msg.command == "PING":
                await self.write(f"PONG :{msg.trailing}")
            elif msg.command == "001":
                if msg.params:
                    self.nick = msg.params[0]
                    self._bot_user_id = self.nick
                return
            elif msg.command == "433":
                self.nick += "_"
                await self.write(f"NICK {self.nick}")
            elif msg.command in ("464", "465"):
                raise PlatformAuthError(msg.trailing or "password incorrect", platform="irc")
            elif msg.command == "ERROR":
                raise PlatformAuthError(msg.trailing or "server closed the connection", platform="irc")

    async def write(self, line: str):
        async with self._write_lock:
            self._writer.write(line.encode("utf-8") + b"\r\n")
            await self._writer.drain()

    async def join(self, channel: str):
        await self.write(f"JOIN {channel}")
        self.joined.add(channel.lower())

    # -- outbound --

    async def _channel_id(self, channel: str) -> str:
        # bare names are channels; nicks are addressed with a leading "@"
        if channel.startswith("@"):
            if len(channel) == 1:
                raise ChannelResolutionError("empty nick", platform="irc")
            return channel[1:]
        if channel[0] not in "#&":
            return f"#{channel}"
        return channel

    async def _post(self, channel_id: str, text: str, reply_to: str) -> None:
        if self._closed:
            raise SendError("connection is closed", platform="irc")
        try:
            if channel_id[0] in "#&" and channel_id.lower() not in self.joined:
                await self.join(channel_id)
            for line in text.splitlines() or [""]:
                for chunk in split_message(line, MESSAGE_LIMIT):
                    if chunk:
                        await self.write(f"PRIVMSG {channel_id} :{chunk}")
        except (OSError, ConnectionError) as e:
            raise SendError(f"failed to send to {channel_id}: {e}", platform="irc") from e

    # -- inbound --

    def to_inbound(self, msg: IrcMessage) -> Optional[InboundEvent]:
        if msg.command != "PRIVMSG" or len(msg.params) < 2:
            return None
        target = msg.params[0]
        # private messages are answered to the sender
        channel = target if target[:1] in "#&" else msg.nick
        return InboundEvent(request=Request(msg.trailing, Platform.IRC, channel, msg.nick))

    async def handle_line(self, raw: str) -> int:
        try:
            msg = parse_line(raw)
        except DecodeError as e:
            self.log(str(e))
            return 0
        if msg.command == "PING":
            await self.write(f"PONG :{msg.trailing}")
            return 0
        if msg.command == "NICK" and msg.nick == self.nick and msg.params:
            self.nick = msg.params[0]
            self._bot_user_id = self.nick
            return 0
        inbound = self.to_inbound(msg)
        if inbound is None:
            return 0
        return await self._dispatch(inbound)

    async def _read_line(self) -> Optional[bytes]:
        """Next complete line from the server; None at EOF.

        Raises DecodeError for a line over the reader's limit. What was
        buffered of it is dropped and its tail is skipped on the next call.
        """
        while True:
            try:
                line = await self._reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                if not e.partial:
                    return None
                line = e.partial
            except asyncio.LimitOverrunError as e:
                await self._reader.readexactly(e.consumed)
                self._discarding = True
                raise DecodeError("oversized line dropped", platform="irc") from e
            if self._discarding:
                self._discarding = False
                continue
            return line

    async def process_messages(self) -> None:
        failures = 0
        while not self.stopping:
            try:
                line = await self._read_line()
            except DecodeError as e:
                failures += 1
                if not await self._recover(failures, e):
                    return
                continue
            except (OSError, ConnectionError) as e:
                if not self.stopping:
                    self.log(f"read failed: {e}")
                return
            if line is None:
                self.log("server closed the connection")
                return
            failures = 0
            await self._handle_safely(self.handle_line, line.decode("utf-8", errors="replace"))

    async def _drop(self):
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (OSError, ConnectionError):
            pass

    async def _shutdown(self) -> None:
        try:
            await self.write("QUIT :bye")
        except (OSError, ConnectionError):
            pass
        await self._drop()
