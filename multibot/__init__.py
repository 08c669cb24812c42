"""multibot — one bot, many chat platforms."""

from multibot.config import __version__
from multibot.domain import (
    ExtendedMessage,
    HandlerRegistry,
    ImageReply,
    NoReply,
    Platform,
    PlatformRegistry,
    Request,
    TextReply,
)

__all__ = [
    "__version__",
    "ExtendedMessage",
    "HandlerRegistry",
    "ImageReply",
    "NoReply",
    "Platform",
    "PlatformRegistry",
    "Request",
    "TextReply",
]
