"""Slack adapter — slack_sdk Web API client plus a Socket Mode connection.

Socket Mode needs no public Events API endpoint. Every Socket Mode
request is acknowledged before it is dispatched.
"""

import asyncio
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import BaseModel, ValidationError
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.socket_mode.aiohttp import SocketModeClient
from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse
from slack_sdk.web.async_client import AsyncWebClient

from multibot.adapters.base import BasePlatform
from multibot.config import BackoffPolicy
from multibot.domain.cache import KnownCache
from multibot.domain.dispatcher import Dispatcher
from multibot.domain.errors import (
    AttachmentError,
    DecodeError,
    PlatformAuthError,
    PlatformConnectError,
    SendError,
)
from multibot.domain.models import Attachment, InboundEvent, Platform, Request

_CHANNEL_ID_RE = re.compile(r"^[CGD][A-Z0-9]{6,}$")
_AUTH_ERRORS = {"invalid_auth", "not_authed", "account_inactive", "token_revoked", "token_expired"}
# Message subtypes that still carry user content
_USER_SUBTYPES = {"", "file_share", "thread_broadcast"}


class SlackFile(BaseModel):
    id: str
    name: str = ""
    url_private_download: str = ""
    url_private: str = ""


class SlackMessageEvent(BaseModel):
    type: str
    subtype: str = ""
    user: str = ""
    bot_id: str = ""
    text: str = ""
    channel: str = ""
    ts: str = ""
    thread_ts: str = ""
    files: List[SlackFile] = []


def _api_error(e: SlackApiError) -> str:
    response = e.response
    error = response.get("error") if response is not None else None
    return error or str(e).splitlines()[0]


class SlackMessagePlatform(BasePlatform):
    """Implements MessagePlatform for a Slack workspace (Socket Mode app)."""

    platform = Platform.SLACK

    def __init__(
        self,
        bot_token: str,
        app_token: str,
        bot_user_id: str,
        web_client: AsyncWebClient,
        socket_client: Optional[SocketModeClient] = None,
        session: Optional[aiohttp.ClientSession] = None,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
        owns_session: bool = False,
    ):
        super().__init__(dispatcher=dispatcher, default_channel=default_channel, backoff=backoff)
        self.bot_token = bot_token
        self.app_token = app_token
        self._bot_user_id = bot_user_id
        self.web_client = web_client
        self.socket_client = socket_client
        self._session = session
        self._owns_session = owns_session
        self.channel_ids: KnownCache[str] = KnownCache()
        # the SDK runs every listener call in its own task; keep one adapter sequential
        self._dispatch_lock = asyncio.Lock()
        if socket_client is not None:
            socket_client.socket_mode_request_listeners.append(self.on_request)

    @classmethod
    async def create(
        cls,
        bot_token: str,
        app_token: str,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
        web_client: Optional[AsyncWebClient] = None,
        socket_client: Optional[SocketModeClient] = None,
    ) -> "SlackMessagePlatform":
        """Validate the bot token with ``auth.test``."""
        owns = session is None
        if owns:
            session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))
        if web_client is None:
            web_client = AsyncWebClient(token=bot_token, timeout=int(timeout), session=session)

        try:
            auth = await web_client.auth_test()
        except SlackApiError as e:
            if owns:
                await session.close()
            error = _api_error(e)
            if error in _AUTH_ERRORS:
                raise PlatformAuthError(f"auth.test failed: {error}", platform="slack") from e
            raise PlatformConnectError(f"auth.test failed: {error}", platform="slack") from e
        except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            if owns:
                await session.close()
            raise PlatformConnectError(str(e) or type(e).__name__, platform="slack") from e

        if socket_client is None:
            socket_client = SocketModeClient(app_token=app_token, web_client=web_client)
        platform = cls(
            bot_token,
            app_token,
            auth.get("user_id", ""),
            web_client,
            socket_client=socket_client,
            session=session,
            dispatcher=dispatcher,
            default_channel=default_channel,
            backoff=backoff,
            owns_session=owns,
        )
        platform.log(f"connected to {auth.get('team', '?')} as {auth.get('user', '?')}")
        return platform

    # -- outbound --

    async def _load_channels(self):
        cursor = ""
        names: Dict[str, str] = {}
        while True:
            kwargs: Dict[str, Any] = {"types": "public_channel,private_channel", "limit": 1000, "exclude_archived": True}
            if cursor:
                kwargs["cursor"] = cursor
            try:
                page = await self.web_client.conversations_list(**kwargs)
            except SlackApiError as e:
                self.log(f"conversations.list failed: {_api_error(e)}")
                break
            for ch in page.get("channels") or []:
                if ch.get("name") and ch.get("id"):
                    names[ch["name"]] = ch["id"]
            cursor = (page.get("response_metadata") or {}).get("next_cursor", "")
            if not cursor:
                break
        self.channel_ids.update(names)

    async def _channel_id(self, channel: str) -> str:
        if _CHANNEL_ID_RE.match(channel):
            return channel
        name = channel.lstrip("#")
        cached = self.channel_ids.get(name)
        if cached:
            return cached
        try:
            await self._load_channels()
        except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.log(f"channel lookup failed: {e}")
        # chat.postMessage also accepts a bare channel name
        return self.channel_ids.get(name) or name

    async def _post(self, channel_id: str, text: str, reply_to: str) -> None:
        kwargs = {"channel": channel_id, "text": text}
        if reply_to:
            kwargs["thread_ts"] = reply_to
        try:
            await self.web_client.chat_postMessage(**kwargs)
        except SlackApiError as e:
            raise SendError(
                f"failed to send message to channel {channel_id}: {_api_error(e)}", platform="slack"
            ) from e
        except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SendError(f"failed to send message: {e}", platform="slack") from e

    async def download_attachment(self, attachment: Attachment, dest: Path) -> Path:
        if self._session is None:
            raise AttachmentError("no HTTP session for downloads", platform="slack")
        headers = {"Authorization": f"Bearer {self.bot_token}"}
        try:
            async with self._session.get(attachment.ref, headers=headers) as resp:
                if resp.status != 200:
                    raise AttachmentError(f"failed to download {attachment.name}, status {resp.status}", platform="slack")
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AttachmentError(f"failed to download {attachment.name}: {e}", platform="slack") from e
        dest.write_bytes(data)
        return dest

    # -- inbound --

    def to_inbound(self, event: Dict[str, Any]) -> Optional[InboundEvent]:
        """Normalize an Events API ``event`` object. None for non-message events."""
        if event.get("type") != "message":
            return None
        try:
            msg = SlackMessageEvent.model_validate(event)
        except ValidationError as e:
            raise DecodeError(f"malformed message event: {e}", platform="slack") from e
        if msg.subtype not in _USER_SUBTYPES or not msg.user:
            return None
        attachments = tuple(
            Attachment(ref=f.url_private_download or f.url_private, name=f"{f.id}-{f.name}")
            for f in msg.files
            if f.url_private_download or f.url_private
        )
        return InboundEvent(
            request=Request(msg.text, Platform.SLACK, msg.channel, msg.user),
            message_id=msg.thread_ts or msg.ts,
            attachments=attachments,
        )

    async def handle_event(self, event: Dict[str, Any]) -> int:
        try:
            inbound = self.to_inbound(event)
        except DecodeError as e:
            self.log(str(e))
            return 0
        if inbound is None:
            return 0
        async with self._dispatch_lock:
            return await self._dispatch(inbound)

    async def on_request(self, client: SocketModeClient, req: SocketModeRequest) -> int:
        """Socket Mode listener: ack the envelope, then dispatch Events API messages."""
        if req.envelope_id:
            await client.send_socket_mode_response(SocketModeResponse(envelope_id=req.envelope_id))
        if self.stopping or req.type != "events_api":
            return 0
        payload = req.payload if isinstance(req.payload, dict) else {}
        event = payload.get("event")
        if not isinstance(event, dict):
            self.log(f"events_api envelope {req.envelope_id} without an event dropped")
            return 0
        return await self._handle_safely(self.handle_event, event)

    async def process_messages(self) -> None:
        """Open the Socket Mode connection and hold it until close().

        The SDK reconnects on ``disconnect`` requests and dropped sockets;
        only the initial connect is retried here.
        """
        if self.socket_client is None:
            raise PlatformConnectError("no socket mode client", platform="slack")
        failures = 0
        while not self.stopping:
            try:
                await self.socket_client.connect()
            except SlackApiError as e:
                if _api_error(e) in _AUTH_ERRORS:
                    self.log(f"app token rejected: {_api_error(e)}")
                    return
                failures += 1
                if not await self._recover(failures, e):
                    return
                continue
            except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                failures += 1
                if not await self._recover(failures, e):
                    return
                continue
            self.log("socket mode connected")
            await self._stop.wait()
            return

    async def _shutdown(self) -> None:
        if self.socket_client is not None:
            await self.socket_client.close()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
