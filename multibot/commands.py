"""Built-in command handlers."""

import asyncio
import sys
from typing import Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from multibot.domain.handlers import HandlerRegistry
from multibot.domain.models import Request

STOIC_QUOTES_URL = "https://stoicquotesapi.com/v1/api/quotes/random"


def _log(msg: str):
    print(msg, file=sys.stderr)


class StoicQuote(BaseModel):
    id: Optional[str] = None
    body: str
    author_id: Optional[int] = None
    author: str = ""

    def format(self) -> str:
        return f"{self.body} — {self.author}"


async def fetch_stoic_quote(session=None, timeout: float = 30.0) -> str:
    """Random quote from stoicquotesapi.com. Empty string on failure (no reply)."""
    owns = session is None
    if owns:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))
    try:
        async with session.get(STOIC_QUOTES_URL) as resp:
            if resp.status != 200:
                _log(f"[commands] stoicquotesapi returned status {resp.status}")
                return ""
            data = await resp.json(content_type=None)
        return StoicQuote.model_validate(data).format()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        _log(f"[commands] error retrieving stoicquotesapi: {e}")
        return ""
    except (ValidationError, ValueError) as e:
        _log(f"[commands] error decoding stoicquotesapi response: {e}")
        return ""
    finally:
        if owns:
            await session.close()


def echo(req: Request) -> str:
    return req.text


def register_builtin(handlers: HandlerRegistry, timeout: float = 30.0) -> HandlerRegistry:
    """Register the stock greetings, ``!stoic`` and ``!echo <text>``."""
    handlers.on_text("hello", lambda: "World!")
    handlers.on_text("o/", lambda: "\\o")

    async def stoic() -> str:
        return await fetch_stoic_quote(timeout=timeout)

    handlers.on_text("!stoic", stoic)
    handlers.on_command("!echo", echo)
    return handlers
