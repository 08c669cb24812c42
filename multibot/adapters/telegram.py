"""Telegram adapter — python-telegram-bot ``Bot`` with a getUpdates long-poll loop."""

import asyncio
import re
from pathlib import Path
from typing import Optional

from telegram import Bot, Message, ReplyParameters, Update, User
from telegram.error import Forbidden, InvalidToken, TelegramError
from telegram.request import HTTPXRequest

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

MESSAGE_LIMIT = 4096
LONG_POLL_SECONDS = 25
ALLOWED_UPDATES = ["message", "channel_post"]

_CHAT_ID_RE = re.compile(r"^-?\d+$")


class TelegramMessagePlatform(BasePlatform):
    """Implements MessagePlatform for a Telegram bot."""

    platform = Platform.TELEGRAM

    def __init__(
        self,
        bot: Bot,
        me: User,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
    ):
        super().__init__(dispatcher=dispatcher, default_channel=default_channel, backoff=backoff)
        self.bot = bot
        self.me = me
        self._bot_user_id = str(me.id)
        self._offset = 0
        self.known_chats: KnownCache[str] = KnownCache()
        self.known_users: KnownCache[User] = KnownCache()

    @classmethod
    async def create(
        cls,
        token: str,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
        timeout: float = 30.0,
        bot: Optional[Bot] = None,
    ) -> "TelegramMessagePlatform":
        """Validate the token; ``Bot.initialize`` calls ``getMe``."""
        try:
            if bot is None:
                bot = Bot(token, request=HTTPXRequest(connect_timeout=timeout, read_timeout=timeout))
            await bot.initialize()
        except (InvalidToken, Forbidden) as e:
            raise PlatformAuthError(f"getMe failed: {e}", platform="telegram") from e
        except TelegramError as e:
            raise PlatformConnectError(f"getMe failed: {e}", platform="telegram") from e

        me = bot.bot
        platform = cls(bot, me, dispatcher=dispatcher, default_channel=default_channel, backoff=backoff)
        platform.log(f"authorized on account {me.username}")
        return platform

    # -- outbound --

    async def _channel_id(self, channel: str) -> str:
        if _CHAT_ID_RE.match(channel) or channel.startswith("@"):
            return channel
        chat_id = self.known_chats.get(channel.lstrip("#").lower())
        if not chat_id:
            raise ChannelResolutionError(
                f"unknown chat {channel!r}; the bot has not seen a message from it yet", platform="telegram"
            )
        return chat_id

    async def _post(self, channel_id: str, text: str, reply_to: str) -> None:
        reply_parameters = None
        if reply_to:
            reply_parameters = ReplyParameters(message_id=int(reply_to), allow_sending_without_reply=True)
        for chunk in split_message(text, MESSAGE_LIMIT):
            try:
                await self.bot.send_message(chat_id=channel_id, text=chunk, reply_parameters=reply_parameters)
            except TelegramError as e:
                raise SendError(f"failed to send message to chat {channel_id}: {e}", platform="telegram") from e

    async def download_attachment(self, attachment: Attachment, dest: Path) -> Path:
        try:
            tg_file = await self.bot.get_file(attachment.ref)
            await tg_file.download_to_drive(custom_path=dest)
        except (TelegramError, ValueError) as e:
            raise AttachmentError(f"failed to download file {attachment.ref}: {e}", platform="telegram") from e
        return dest

    # -- inbound --

    def remember(self, message: Message):
        """Learn chat names so outbound sends can address chats by title."""
        chat = message.chat
        for name in (chat.title, chat.username):
            if name:
                self.known_chats.put(name.lower(), str(chat.id))
        if message.from_user:
            self.known_users.put(str(message.from_user.id), message.from_user)

    def to_inbound(self, update: Update) -> Optional[InboundEvent]:
        message = update.message or update.channel_post
        if message is None:
            return None
        self.remember(message)

        attachments = []
        if message.photo:
            largest = max(message.photo, key=lambda p: p.file_size or 0)
            attachments.append(Attachment(ref=largest.file_id, name=f"{largest.file_unique_id or largest.file_id}.jpg"))
        if message.document:
            doc = message.document
            attachments.append(Attachment(ref=doc.file_id, name=doc.file_name or doc.file_unique_id))

        user_id = str(message.from_user.id) if message.from_user else ""
        return InboundEvent(
            request=Request(message.text or message.caption or "", Platform.TELEGRAM, str(message.chat.id), user_id),
            message_id=str(message.message_id),
            attachments=tuple(attachments),
        )

    async def handle_update(self, update: Update) -> int:
        self._offset = max(self._offset, update.update_id + 1)
        inbound = self.to_inbound(update)
        if inbound is None:
            return 0
        return await self._dispatch(inbound)

    async def process_messages(self) -> None:
        failures = 0
        while not self.stopping:
            try:
                updates = await self.bot.get_updates(
                    offset=self._offset,
                    timeout=LONG_POLL_SECONDS,
                    allowed_updates=ALLOWED_UPDATES,
                )
            except (InvalidToken, Forbidden) as e:
                self.log(f"token rejected: {e}")
                return
            except (TelegramError, asyncio.TimeoutError) as e:
                if self.stopping:
                    return
                failures += 1
                if not await self._recover(failures, e):
                    return
                continue
            failures = 0
            for update in updates:
                if self.stopping:
                    return
                await self._handle_safely(self.handle_update, update)

    async def _shutdown(self) -> None:
        try:
            await self.bot.shutdown()
        except TelegramError as e:
            self.log(f"shutdown failed: {e}")
