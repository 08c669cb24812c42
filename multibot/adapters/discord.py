"""Discord adapter — wraps a discord.Client and converts its messages.

The client is owned by the platform (not subclassed by it); the thin
``_DiscordClient`` only forwards gateway events.
"""

import asyncio
import io
from pathlib import Path
from typing import Optional

import aiohttp
import discord

from multibot.adapters.base import BasePlatform, split_message
from multibot.config import BackoffPolicy
from multibot.domain.cache import KnownCache
from multibot.domain.dispatcher import Dispatcher
from multibot.domain.errors import (
    AttachmentError,
    ChannelResolutionError,
    PlatformAuthError,
    PlatformConnectError,
    SendError,
)
from multibot.domain.models import Attachment, InboundEvent, Platform, Request

MESSAGE_LIMIT = 2000


class _DiscordClient(discord.Client):
    def __init__(self, owner: "DiscordMessagePlatform", **kwargs):
        intents = discord.Intents.none()
        intents.guilds = True
        intents.guild_messages = True
        intents.message_content = True
        super().__init__(intents=intents, **kwargs)
        self._owner = owner

    async def on_ready(self):
        self._owner.log(f"logged in as {self.user}")

    async def on_message(self, message: discord.Message):
        await self._owner._handle_safely(self._owner.handle_message, message)


class DiscordMessagePlatform(BasePlatform):
    """Implements MessagePlatform for a Discord bot account."""

    platform = Platform.DISCORD

    def __init__(
        self,
        token: str,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
        client: Optional[discord.Client] = None,
    ):
        super().__init__(dispatcher=dispatcher, default_channel=default_channel, backoff=backoff)
        self.token = token
        self.client = client or _DiscordClient(self)
        self.channel_ids: KnownCache[str] = KnownCache()
        # discord.py runs each event in its own task; keep one adapter sequential
        self._dispatch_lock = asyncio.Lock()

    @classmethod
    async def create(
        cls,
        token: str,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
    ) -> "DiscordMessagePlatform":
        """Log in over REST; the gateway connection starts in process_messages()."""
        platform = cls(token, dispatcher=dispatcher, default_channel=default_channel, backoff=backoff)
        try:
            await platform.client.login(token)
        except discord.LoginFailure as e:
            await platform.client.close()
            raise PlatformAuthError(str(e), platform="discord") from e
        except (discord.HTTPException, aiohttp.ClientError, asyncio.TimeoutError) as e:
            await platform.client.close()
            raise PlatformConnectError(str(e) or type(e).__name__, platform="discord") from e
        if platform.client.user is not None:
            platform._bot_user_id = str(platform.client.user.id)
            platform.log(f"authorized as {platform.client.user}")
        return platform

    # -- outbound --

    async def _load_channels(self):
        names = {}
        if self.client.is_ready():
            channels = [c for c in self.client.get_all_channels() if isinstance(c, discord.TextChannel)]
        else:
            channels = []
            async for guild in self.client.fetch_guilds():
                for channel in await guild.fetch_channels():
                    if isinstance(channel, discord.TextChannel):
                        channels.append(channel)
        for channel in channels:
            names.setdefault(channel.name, str(channel.id))
        self.channel_ids.update(names)

    async def _channel_id(self, channel: str) -> str:
        if channel.isdigit():
            return channel
        name = channel.lstrip("#")
        cached = self.channel_ids.get(name)
        if cached:
            return cached
        try:
            await self._load_channels()
        except discord.HTTPException as e:
            raise SendError(f"channel lookup failed: {e}", platform="discord") from e
        channel_id = self.channel_ids.get(name)
        if not channel_id:
            raise ChannelResolutionError(f"unknown channel {channel!r}", platform="discord")
        return channel_id

    def _reference(self, channel_id: str, reply_to: str) -> Optional[discord.MessageReference]:
        if not reply_to:
            return None
        return discord.MessageReference(
            message_id=int(reply_to), channel_id=int(channel_id), fail_if_not_exists=False
        )

    async def _post(self, channel_id: str, text: str, reply_to: str) -> None:
        target = self.client.get_partial_messageable(int(channel_id))
        reference = self._reference(channel_id, reply_to)
        try:
            for chunk in split_message(text, MESSAGE_LIMIT):
                if reference is not None:
                    await target.send(chunk, reference=reference)
                else:
                    await target.send(chunk)
        except (discord.HTTPException, aiohttp.ClientError) as e:
            raise SendError(f"failed to send message to channel {channel_id}: {e}", platform="discord") from e

    async def send_image_reply(self, channel_id: str, text: str, image: bytes, reply_to: str = "") -> None:
        target = self.client.get_partial_messageable(int(channel_id))
        file = discord.File(io.BytesIO(image), filename="image.png")
        kwargs = {"file": file}
        reference = self._reference(channel_id, reply_to)
        if reference is not None:
            kwargs["reference"] = reference
        try:
            await target.send(text[:MESSAGE_LIMIT] or None, **kwargs)
        except (discord.HTTPException, aiohttp.ClientError) as e:
            raise SendError(f"failed to upload image to channel {channel_id}: {e}", platform="discord") from e

    async def download_attachment(self, attachment: Attachment, dest: Path) -> Path:
        try:
            await attachment.ref.save(dest)
        except (discord.HTTPException, aiohttp.ClientError) as e:
            raise AttachmentError(f"failed to download {attachment.name}: {e}", platform="discord") from e
        return dest

    # -- inbound --

    def to_inbound(self, message: discord.Message) -> InboundEvent:
        return InboundEvent(
            request=Request(
                message.content,
                Platform.DISCORD,
                str(message.channel.id),
                str(message.author.id),
            ),
            message_id=str(message.id),
            attachments=tuple(
                Attachment(ref=a, name=f"{a.id}-{a.filename}") for a in message.attachments
            ),
        )

    async def handle_message(self, message: discord.Message) -> int:
        if self.stopping:
            return 0
        if self.client.user is not None and not self._bot_user_id:
            self._bot_user_id = str(self.client.user.id)
        async with self._dispatch_lock:
            return await self._dispatch(self.to_inbound(message))

    async def process_messages(self) -> None:
        """Run the gateway connection until close(). discord.py reconnects on its own."""
        if self.stopping:
            return
        try:
            await self.client.connect(reconnect=True)
        except (discord.GatewayNotFound, discord.ConnectionClosed) as e:
            if not self.stopping:
                self.log(f"gateway connection ended: {e}")

    async def _shutdown(self) -> None:
        if not self.client.is_closed():
            await self.client.close()
