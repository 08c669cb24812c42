"""Port interfaces (Hexagonal Architecture)."""

from multibot.ports.inbound import Attachment, InboundEvent
from multibot.ports.outbound import MessagePlatform, ReplyPort

__all__ = [
    "Attachment",
    "InboundEvent",
    "MessagePlatform",
    "ReplyPort",
]
