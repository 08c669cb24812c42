"""Dispatcher — routes one inbound event through the handler registry.

Platform-agnostic: adapters normalize their native events into an
InboundEvent and hand it over together with themselves as the ReplyPort.

Stages run in a fixed order and never short-circuit each other:

1. self-filter (the only stage that stops processing)
2. exact text
3. catchall
4. extended catchall
5. command word
6. attachments → image handlers
"""

import inspect
import re
import sys
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from multibot.domain.errors import AttachmentError
from multibot.domain.handlers import HandlerRegistry
from multibot.domain.models import (
    Attachment,
    ExtendedMessage,
    ImageReply,
    InboundEvent,
    NoReply,
    Reply,
    TextReply,
    as_reply,
)

if TYPE_CHECKING:
    from multibot.ports.outbound import ReplyPort

_UNSAFE_NAME_RE = re.compile(r"[^\w.\-]")


def _log(msg: str):
    print(msg, file=sys.stderr)


def split_command(content: str):
    """Split on the first space. Returns (word, remainder) or None without a remainder."""
    parts = content.split(" ", 1)
    if len(parts) < 2:
        return None
    return parts[0], parts[1]


class Dispatcher:
    """Runs the handler stages for one adapter's events.

    Attachment files are written under ``attachment_dir`` and removed once
    the image handlers ran, unless ``keep_attachments`` is set.
    """

    def __init__(
        self,
        handlers: HandlerRegistry,
        attachment_dir: str = "tmp",
        keep_attachments: bool = False,
    ):
        self.handlers = handlers
        self.attachment_dir = Path(attachment_dir)
        self.keep_attachments = keep_attachments

    async def dispatch(self, port: "ReplyPort", event: InboundEvent) -> int:
        """Process one event. Returns the number of replies sent."""
        req = event.request
        if req.user_id and req.user_id == port.bot_user_id:
            return 0

        content = req.text
        tag = f"[{req.platform}]"
        sent = 0

        exact = self.handlers.exact.get(content)
        if exact is not None:
            result = await self._invoke(tag, "exact", exact)
            sent += await self._reply(port, event, result)

        for handler in list(self.handlers.catchall):
            result = await self._invoke(tag, "catchall", handler, req)
            sent += await self._reply(port, event, result)

        for handler in list(self.handlers.extended):
            result = await self._invoke(tag, "extended", handler, ExtendedMessage(text=content))
            sent += await self._reply(port, event, result)

        command = split_command(content)
        if command:
            word, remainder = command
            handler = self.handlers.commands.get(word)
            if handler is not None:
                result = await self._invoke(tag, f"command {word}", handler, req.with_text(remainder))
                sent += await self._reply(port, event, result)

        for attachment in event.attachments:
            sent += await self._process_attachment(port, event, attachment)

        return sent

    async def _process_attachment(self, port: "ReplyPort", event: InboundEvent, attachment: Attachment) -> int:
        req = event.request
        tag = f"[{req.platform}]"
        dest = self._attachment_path(req.platform.value, attachment)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            path = await port.download_attachment(attachment, dest)
        except (AttachmentError, OSError) as e:
            _log(f"{tag} attachment {attachment.name or attachment.ref!r} skipped: {e}")
            return 0
        except Exception as e:
            _log(f"{tag} attachment {attachment.name or attachment.ref!r} download failed: {e!r}")
            return 0

        sent = 0
        try:
            for handler in list(self.handlers.image):
                result = await self._invoke(tag, "image", handler, str(path), req)
                sent += await self._reply(port, event, result)
        finally:
            if not self.keep_attachments:
                try:
                    Path(path).unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    _log(f"{tag} could not remove {path}: {e}")
        return sent

    def _attachment_path(self, platform: str, attachment: Attachment) -> Path:
        name = _UNSAFE_NAME_RE.sub("_", attachment.name or "")
        if not name.strip("._"):
            name = uuid.uuid4().hex
        return self.attachment_dir / f"{platform}-{name}"

    @staticmethod
    async def _invoke(tag: str, stage: str, handler: Callable, *args) -> Any:
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            _log(f"{tag} {stage} handler {getattr(handler, '__name__', handler)!r} failed: {e}")
            return None

    @staticmethod
    async def _reply(port: "ReplyPort", event: InboundEvent, result: Any) -> int:
        try:
            reply: Reply = as_reply(result)
        except TypeError as e:
            _log(f"[{event.request.platform}] {e}")
            return 0
        if isinstance(reply, NoReply):
            return 0

        channel_id = event.request.channel_id
        try:
            if isinstance(reply, ImageReply):
                await port.send_image_reply(channel_id, reply.text, reply.image, event.message_id)
            elif isinstance(reply, TextReply):
                await port.send_reply(channel_id, reply.text, event.message_id)
        except Exception as e:
            _log(f"[{event.request.platform}] reply to {channel_id} failed: {e}")
            return 0
        return 1


def build_dispatcher(handlers: HandlerRegistry, config: Optional[Any] = None) -> Dispatcher:
    """Dispatcher wired from a DispatchConfig (or defaults)."""
    if config is None:
        return Dispatcher(handlers)
    return Dispatcher(
        handlers,
        attachment_dir=config.attachment_dir,
        keep_attachments=config.keep_attachments,
    )
