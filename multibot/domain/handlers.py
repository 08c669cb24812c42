"""Handler registry — exact text, catchall, extended, command word, image.

Registration is additive and happens at startup. ``freeze()`` is called
before any receive loop starts; the dispatcher only reads afterwards.
"""

import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from multibot.domain.models import ExtendedMessage, Request

TextResult = Union[str, Awaitable[str]]

ExactHandler = Callable[[], TextResult]
CatchallHandler = Callable[[Request], TextResult]
ExtendedHandler = Callable[[ExtendedMessage], Any]
CommandHandler = Callable[[Request], TextResult]
ImageHandler = Callable[[str, Request], TextResult]


def _log(msg: str):
    print(msg, file=sys.stderr)


class HandlerRegistry:
    """The five handler tables consulted by the dispatcher.

    Each ``on_*`` method can be called directly or used as a decorator::

        @handlers.on_command("!echo")
        def echo(req):
            return req.text
    """

    def __init__(self):
        self.exact: Dict[str, ExactHandler] = {}
        self.catchall: List[CatchallHandler] = []
        self.extended: List[ExtendedHandler] = []
        self.commands: Dict[str, CommandHandler] = {}
        self.image: List[ImageHandler] = []
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self):
        self._frozen = True

    def _check_open(self):
        if self._frozen:
            raise RuntimeError("handler registry is frozen; register handlers before starting")

    def on_text(self, key: str, handler: Optional[ExactHandler] = None):
        """Exact-text handler. A later registration for the same key wins."""
        def register(fn):
            self._check_open()
            if key in self.exact:
                _log(f"[handlers] exact handler for {key!r} replaced")
            self.exact[key] = fn
            return fn
        return register(handler) if handler else register

    def on_catchall(self, handler: Optional[CatchallHandler] = None):
        def register(fn):
            self._check_open()
            self.catchall.append(fn)
            return fn
        return register(handler) if handler else register

    def on_extended(self, handler: Optional[ExtendedHandler] = None):
        def register(fn):
            self._check_open()
            self.extended.append(fn)
            return fn
        return register(handler) if handler else register

    def on_command(self, word: str, handler: Optional[CommandHandler] = None):
        """Command-word handler; receives a Request whose text is the remainder."""
        if not word or " " in word:
            raise ValueError(f"command word must be a single token: {word!r}")

        def register(fn):
            self._check_open()
            if word in self.commands:
                _log(f"[handlers] command handler for {word!r} replaced")
            self.commands[word] = fn
            return fn
        return register(handler) if handler else register

    def on_image(self, handler: Optional[ImageHandler] = None):
        def register(fn):
            self._check_open()
            self.image.append(fn)
            return fn
        return register(handler) if handler else register

    def __len__(self) -> int:
        return (
            len(self.exact) + len(self.catchall) + len(self.extended)
            + len(self.commands) + len(self.image)
        )


__all__ = [
    "CatchallHandler",
    "CommandHandler",
    "ExactHandler",
    "ExtendedHandler",
    "HandlerRegistry",
    "ImageHandler",
]
