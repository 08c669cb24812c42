"""Shared plumbing for the platform adapters.

Each adapter owns its own transport (SDK client, aiohttp session, socket)
and implements ``_post``/``process_messages``; this base provides the
default-channel fallback, the fire-and-forget sends, the stop signal and
the receive-loop backoff.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

from multibot.config import BackoffPolicy
from multibot.domain.dispatcher import Dispatcher
from multibot.domain.errors import AttachmentError, ChannelResolutionError
from multibot.domain.models import Attachment, InboundEvent, Platform, SendOptions


def _log(msg: str):
    print(msg, file=sys.stderr)


def split_message(text: str, limit: int) -> list:
    """Split a message into chunks that fit a platform's character limit."""
    if len(text) <= limit:
        return [text]
    chunks = []
    while text:
        chunks.append(text[:limit])
        text = text[limit:]
    return chunks


class BasePlatform:
    platform: Platform

    def __init__(
        self,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
    ):
        self.dispatcher = dispatcher
        self.default_channel = default_channel
        self.backoff = backoff or BackoffPolicy()
        self._bot_user_id = ""
        self._stop = asyncio.Event()
        self._closed = False

    @property
    def bot_user_id(self) -> str:
        return self._bot_user_id

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def log(self, msg: str):
        _log(f"[{self.platform}] {msg}")

    def _resolve_channel(self, channel: str) -> str:
        channel = channel or self.default_channel
        if not channel:
            raise ChannelResolutionError("no channel specified", platform=self.platform.value)
        return channel

    # -- outbound --

    async def send(self, text: str) -> None:
        """Fire-and-forget send to the default channel."""
        await self.send_with_options(text, SendOptions())

    async def send_with_options(self, text: str, options: SendOptions) -> None:
        try:
            if options.reply_to:
                channel = await self._channel_id(self._resolve_channel(options.channel))
                await self.send_reply(channel, text, options.reply_to)
            else:
                await self.channel_message_send(options.channel, text)
        except Exception as e:
            self.log(f"send failed: {e}")

    async def channel_message_send(self, channel: str, message: str) -> None:
        """Send to ``channel`` (default channel when empty). Raises SendError."""
        target = self._resolve_channel(channel)
        channel_id = await self._channel_id(target)
        await self._post(channel_id, message, "")

    async def send_reply(self, channel_id: str, text: str, reply_to: str = "") -> None:
        await self._post(channel_id, text, reply_to)

    async def send_image_reply(self, channel_id: str, text: str, image: bytes, reply_to: str = "") -> None:
        # TODO: multipart upload; until then the caption goes out alone
        self.log(f"image upload not supported, sending text only ({len(image)} bytes dropped)")
        if text:
            await self.send_reply(channel_id, text, reply_to)

    async def _channel_id(self, channel: str) -> str:
        """Map a channel name to the platform's channel id. Identity by default."""
        return channel

    async def _post(self, channel_id: str, text: str, reply_to: str) -> None:
        raise NotImplementedError

    async def download_attachment(self, attachment: Attachment, dest: Path) -> Path:
        raise AttachmentError("attachments are not supported", platform=self.platform.value)

    # -- inbound --

    async def process_messages(self) -> None:
        raise NotImplementedError

    async def _dispatch(self, event: InboundEvent) -> int:
        if self.dispatcher is None:
            return 0
        return await self.dispatcher.dispatch(self, event)

    async def _handle_safely(self, handle, event) -> int:
        """Run one per-event handler from a receive loop. A failure drops that event only."""
        try:
            return await handle(event)
        except Exception as e:
            self.log(f"event dropped: {e!r}")
            return 0

    async def _recover(self, failures: int, error: Exception) -> bool:
        """Log a transient read failure and back off. False means stop the loop."""
        if self.stopping:
            return False
        self.log(f"receive failed ({failures}): {error}")
        if self.backoff.exhausted(failures):
            self.log(f"giving up after {failures} consecutive failures")
            return False
        await self._sleep(self.backoff.delay)
        return not self.stopping

    async def _sleep(self, delay: float):
        """Sleep that ends early when close() is called."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # -- lifecycle --

    async def close(self) -> None:
        """Stop the receive loop and release the transport. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        await self._shutdown()

    async def _shutdown(self) -> None:
        pass
