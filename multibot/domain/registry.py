"""Platform registry — which adapters are configured, and which are listening.

Active platforms get a receive loop (``start()``); passive ones are only
used for outbound sends, e.g. a one-shot ``sendmsg``.
"""

import asyncio
import sys
from typing import TYPE_CHECKING, Dict, List, Optional

from multibot.domain.errors import SendError
from multibot.domain.models import Platform

if TYPE_CHECKING:
    from multibot.ports.outbound import MessagePlatform


def _log(msg: str):
    print(msg, file=sys.stderr)


class PlatformRegistry:
    def __init__(self):
        self._platforms: Dict[Platform, "MessagePlatform"] = {}
        self._active: Dict[Platform, bool] = {}
        self._tasks: Dict[Platform, asyncio.Task] = {}
        self._frozen = False

    # -- registration (startup only) --

    def _add(self, platform: "MessagePlatform", active: bool):
        if self._frozen:
            raise RuntimeError("platform registry is frozen; register platforms before starting")
        tag = Platform(platform.platform)
        if tag in self._platforms:
            raise ValueError(f"{tag} is already registered")
        self._platforms[tag] = platform
        self._active[tag] = active
        _log(f"[registry] {tag} registered ({'active' if active else 'passive'})")

    def register(self, platform: "MessagePlatform"):
        """Register for inbound dispatch and outbound send."""
        self._add(platform, active=True)

    def register_passive(self, platform: "MessagePlatform"):
        """Register for outbound send only; no receive loop is started."""
        self._add(platform, active=False)

    def unregister(self, tag) -> Optional["MessagePlatform"]:
        tag = Platform(tag)
        self._active.pop(tag, None)
        task = self._tasks.pop(tag, None)
        if task and not task.done():
            task.cancel()
        return self._platforms.pop(tag, None)

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- lookups --

    def get(self, tag) -> Optional["MessagePlatform"]:
        return self._platforms.get(Platform(tag))

    def platforms(self) -> List["MessagePlatform"]:
        return list(self._platforms.values())

    def active(self) -> List["MessagePlatform"]:
        return [p for tag, p in self._platforms.items() if self._active[tag]]

    def passive(self) -> List["MessagePlatform"]:
        return [p for tag, p in self._platforms.items() if not self._active[tag]]

    def __contains__(self, tag) -> bool:
        try:
            return Platform(tag) in self._platforms
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._platforms)

    # -- outbound --

    async def channel_message_send(self, channel: str, message: str):
        """Send to every registered platform, attempting all of them.

        Raises the error of the last platform that failed, after every
        platform was tried.
        """
        if not self._platforms:
            raise SendError("no platforms registered")
        last_error: Optional[Exception] = None
        for tag, platform in list(self._platforms.items()):
            try:
                await platform.channel_message_send(channel, message)
            except Exception as e:
                _log(f"[{tag}] send to {channel!r} failed: {e}")
                last_error = e
        if last_error is not None:
            raise last_error

    # -- lifecycle --

    async def start(self) -> List[asyncio.Task]:
        """Freeze the registry and spawn one receive loop per active platform."""
        self.freeze()
        for tag, platform in self._platforms.items():
            if not self._active[tag] or tag in self._tasks:
                continue
            self._tasks[tag] = asyncio.create_task(
                self._run(tag, platform), name=f"multibot-{tag}"
            )
        return list(self._tasks.values())

    @staticmethod
    async def _run(tag: Platform, platform: "MessagePlatform"):
        try:
            await platform.process_messages()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            _log(f"[{tag}] receive loop crashed: {e}")
        else:
            _log(f"[{tag}] receive loop stopped")

    async def wait(self):
        """Wait for every receive loop to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def close_all(self, timeout: float = 5.0):
        """Close every platform, then wait for (or cancel) the receive loops."""
        for tag, platform in list(self._platforms.items()):
            try:
                await platform.close()
            except Exception as e:
                _log(f"[{tag}] close failed: {e}")
        tasks = [t for t in self._tasks.values() if not t.done()]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
