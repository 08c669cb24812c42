"""Error taxonomy shared by the adapters, the dispatcher and the registries."""

from typing import Optional


class MultibotError(Exception):
    """Base class for every error raised by multibot."""


class PlatformError(MultibotError):
    """An error attributable to one messaging platform."""

    def __init__(self, message: str, platform: Optional[str] = None):
        self.platform = platform
        prefix = f"[{platform}] " if platform else ""
        super().__init__(f"{prefix}{message}")


class PlatformAuthError(PlatformError):
    """Credentials were rejected while constructing an adapter."""


class PlatformConnectError(PlatformError):
    """The initial network call or handshake could not complete."""


class SendError(PlatformError):
    """Outbound delivery failed."""


class ChannelResolutionError(SendError):
    """Neither an explicit channel nor a default channel could be resolved."""


class DecodeError(PlatformError):
    """A malformed inbound payload. The event is dropped."""


class AttachmentError(PlatformError):
    """An attachment could not be downloaded. The attachment is skipped."""
