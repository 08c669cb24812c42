"""Platform adapters."""

from multibot.adapters.base import BasePlatform, split_message

__all__ = ["BasePlatform", "split_message"]
