"""Inbound port — platform-agnostic message representation.

Adapters produce an InboundEvent per native message; the dispatcher
consumes it. The types themselves are plain domain dataclasses.
"""

from multibot.domain.models import Attachment, InboundEvent, Request

__all__ = ["Attachment", "InboundEvent", "Request"]
