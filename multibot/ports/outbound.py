"""Outbound ports — interfaces every platform adapter implements."""

from pathlib import Path
from typing import Protocol, runtime_checkable

from multibot.domain.models import Platform, SendOptions
from multibot.ports.inbound import Attachment


@runtime_checkable
class ReplyPort(Protocol):
    """What the dispatcher needs from the adapter an event came from."""

    @property
    def bot_user_id(self) -> str: ...

    async def send_reply(self, channel_id: str, text: str, reply_to: str = "") -> None: ...

    async def send_image_reply(
        self, channel_id: str, text: str, image: bytes, reply_to: str = ""
    ) -> None: ...

    async def download_attachment(self, attachment: Attachment, dest: Path) -> Path: ...


@runtime_checkable
class MessagePlatform(Protocol):
    """Capability contract of a messaging platform adapter."""

    platform: Platform
    default_channel: str

    @property
    def bot_user_id(self) -> str: ...

    async def send(self, text: str) -> None: ...

    async def send_with_options(self, text: str, options: SendOptions) -> None: ...

    async def channel_message_send(self, channel: str, message: str) -> None: ...

    async def process_messages(self) -> None: ...

    async def close(self) -> None: ...
