"""Domain layer — pure Python, no framework dependencies."""

from multibot.domain.cache import KnownCache, RWLock
from multibot.domain.dispatcher import Dispatcher, build_dispatcher, split_command
from multibot.domain.errors import (
    AttachmentError,
    ChannelResolutionError,
    DecodeError,
    MultibotError,
    PlatformAuthError,
    PlatformConnectError,
    PlatformError,
    SendError,
)
from multibot.domain.handlers import HandlerRegistry
from multibot.domain.models import (
    NO_REPLY,
    Attachment,
    ExtendedMessage,
    ImageReply,
    InboundEvent,
    NoReply,
    Platform,
    Reply,
    Request,
    SendOptions,
    TextReply,
    as_reply,
)
from multibot.domain.registry import PlatformRegistry

__all__ = [
    "Attachment",
    "AttachmentError",
    "ChannelResolutionError",
    "DecodeError",
    "Dispatcher",
    "ExtendedMessage",
    "HandlerRegistry",
    "ImageReply",
    "InboundEvent",
    "KnownCache",
    "MultibotError",
    "NO_REPLY",
    "NoReply",
    "Platform",
    "PlatformAuthError",
    "PlatformConnectError",
    "PlatformError",
    "PlatformRegistry",
    "Reply",
    "RWLock",
    "Request",
    "SendError",
    "SendOptions",
    "TextReply",
    "as_reply",
    "build_dispatcher",
    "split_command",
]
