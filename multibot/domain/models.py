"""Domain data models — pure Python dataclasses."""

import enum
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union


class Platform(str, enum.Enum):
    DISCORD = "discord"
    SLACK = "slack"
    TELEGRAM = "telegram"
    MATTERMOST = "mattermost"
    IRC = "irc"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Request:
    """Platform-agnostic inbound message as seen by a handler."""

    text: str
    platform: Platform
    channel_id: str
    user_id: str

    def with_text(self, text: str) -> "Request":
        return Request(text, self.platform, self.channel_id, self.user_id)


@dataclass(frozen=True)
class ExtendedMessage:
    """Text plus an optional raw image payload."""

    text: str = ""
    image: Optional[bytes] = None


@dataclass(frozen=True)
class Attachment:
    """Platform-native file reference carried by an inbound message.

    ``ref`` is whatever the adapter needs to fetch the file (a file id, a
    private URL, an SDK object).
    """

    ref: Any
    name: str = ""


@dataclass(frozen=True)
class InboundEvent:
    request: Request
    message_id: str = ""  # root/parent id for threaded replies
    attachments: Tuple[Attachment, ...] = ()


@dataclass
class SendOptions:
    channel: str = ""
    reply_to: str = ""


# -- Replies --------------------------------------------------------------


@dataclass(frozen=True)
class NoReply:
    pass


@dataclass(frozen=True)
class TextReply:
    text: str


@dataclass(frozen=True)
class ImageReply:
    image: bytes
    text: str = ""


Reply = Union[NoReply, TextReply, ImageReply]

NO_REPLY = NoReply()


def as_reply(value: Any) -> Reply:
    """Normalize whatever a handler returned into a Reply.

    None and "" mean nothing to send. An ExtendedMessage becomes an image
    reply when it carries an image, a text reply when it only has text.
    """
    if value is None:
        return NO_REPLY
    if isinstance(value, (NoReply, TextReply, ImageReply)):
        if isinstance(value, TextReply) and not value.text:
            return NO_REPLY
        return value
    if isinstance(value, str):
        return TextReply(value) if value else NO_REPLY
    if isinstance(value, ExtendedMessage):
        if value.image is not None:
            return ImageReply(image=value.image, text=value.text)
        if value.text:
            return TextReply(value.text)
        return NO_REPLY
    raise TypeError(f"unsupported handler result: {type(value).__name__}")
