"""Mattermost adapter — REST v4 + WebSocket over aiohttp."""

import asyncio
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from multibot.adapters.base import BasePlatform
from multibot.config import BackoffPolicy
from multibot.domain.cache import KnownCache
from multibot.domain.dispatcher import Dispatcher
from multibot.domain.errors import (
    AttachmentError,
    ChannelResolutionError,
    DecodeError,
    PlatformAuthError,
    PlatformConnectError,
    SendError,
)
from multibot.domain.models import Attachment, InboundEvent, Platform, Request

_CHANNEL_ID_RE = re.compile(r"^[a-z0-9]{26}$")


class MattermostUser(BaseModel):
    id: str
    username: str = ""
    email: str = ""


class MattermostTeam(BaseModel):
    id: str
    name: str = ""


class MattermostPost(BaseModel):
    id: str
    channel_id: str
    user_id: str
    message: str = ""
    file_ids: Optional[List[str]] = None
    root_id: str = ""


class MattermostEvent(BaseModel):
    event: str = ""
    data: Dict[str, Any] = {}


def _headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


async def get_me(session, server_url: str, token: str) -> MattermostUser:
    async with session.get(f"{server_url}/api/v4/users/me", headers=_headers(token)) as resp:
        if resp.status in (401, 403):
            raise PlatformAuthError(f"authentication failed with status {resp.status}", platform="mattermost")
        if resp.status != 200:
            raise PlatformConnectError(f"/users/me returned status {resp.status}", platform="mattermost")
        data = await resp.json(content_type=None)
    try:
        return MattermostUser.model_validate(data)
    except ValidationError as e:
        raise PlatformConnectError(f"unexpected /users/me payload: {e}", platform="mattermost")


async def get_teams(session, server_url: str, token: str, user_id: str) -> List[MattermostTeam]:
    async with session.get(f"{server_url}/api/v4/users/{user_id}/teams", headers=_headers(token)) as resp:
        if resp.status != 200:
            raise PlatformConnectError(f"failed to get teams with status {resp.status}", platform="mattermost")
        data = await resp.json(content_type=None)
    try:
        return [MattermostTeam.model_validate(t) for t in data or []]
    except ValidationError as e:
        raise PlatformConnectError(f"unexpected teams payload: {e}", platform="mattermost")


class MattermostMessagePlatform(BasePlatform):
    """Implements MessagePlatform for a self-hosted Mattermost server."""

    platform = Platform.MATTERMOST

    def __init__(
        self,
        token: str,
        server_url: str,
        user: MattermostUser,
        session,
        team_id: str = "",
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
        owns_session: bool = False,
    ):
        super().__init__(dispatcher=dispatcher, default_channel=default_channel, backoff=backoff)
        self.token = token
        self.server_url = server_url.rstrip("/")
        self.user = user
        self.team_id = team_id
        self._bot_user_id = user.id
        self._session = session
        self._owns_session = owns_session
        self._ws = None
        self.known_users: KnownCache[MattermostUser] = KnownCache()
        self.channel_ids: KnownCache[str] = KnownCache()

    @classmethod
    async def create(
        cls,
        token: str,
        server_url: str,
        dispatcher: Optional[Dispatcher] = None,
        default_channel: str = "",
        backoff: Optional[BackoffPolicy] = None,
        timeout: float = 30.0,
        session=None,
    ) -> "MattermostMessagePlatform":
        """Validate the token, discover the bot user and its first team."""
        owns = session is None
        if owns:
            session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))
        server_url = server_url.rstrip("/")
        try:
            user = await get_me(session, server_url, token)
            teams = await get_teams(session, server_url, token, user.id)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if owns:
                await session.close()
            raise PlatformConnectError(str(e) or type(e).__name__, platform="mattermost") from e
        except Exception:
            if owns:
                await session.close()
            raise

        platform = cls(
            token,
            server_url,
            user,
            session,
            dispatcher=dispatcher,
            default_channel=default_channel,
            backoff=backoff,
            owns_session=owns,
        )
        platform.log(f"connected on account {user.username}")
        if teams:
            platform.team_id = teams[0].id
            platform.log(f"using team: {teams[0].name}")
        return platform

    @property
    def _headers(self) -> Dict[str, str]:
        return _headers(self.token)

    # -- outbound --

    async def _channel_id(self, channel: str) -> str:
        if _CHANNEL_ID_RE.match(channel):
            return channel
        name = channel.lstrip("~#")
        cached = self.channel_ids.get(name)
        if cached:
            return cached
        if not self.team_id:
            raise ChannelResolutionError(f"cannot resolve channel {channel!r} without a team", platform="mattermost")
        url = f"{self.server_url}/api/v4/teams/{self.team_id}/channels/name/{name}"
        try:
            async with self._session.get(url, headers=self._headers) as resp:
                if resp.status != 200:
                    raise ChannelResolutionError(
                        f"unknown channel {channel!r} (status {resp.status})", platform="mattermost"
                    )
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SendError(f"channel lookup failed: {e}", platform="mattermost") from e
        channel_id = (data or {}).get("id", "")
        if not channel_id:
            raise ChannelResolutionError(f"unknown channel {channel!r}", platform="mattermost")
        self.channel_ids.put(name, channel_id)
        return channel_id

    async def _post(self, channel_id: str, text: str, reply_to: str) -> None:
        payload = {"channel_id": channel_id, "message": text}
        if reply_to:
            payload["root_id"] = reply_to
        try:
            async with self._session.post(
                f"{self.server_url}/api/v4/posts", headers=self._headers, json=payload
            ) as resp:
                if resp.status != 201:
                    body = await resp.text()
                    raise SendError(
                        f"failed to send message to channel {channel_id}, status {resp.status}: {body}",
                        platform="mattermost",
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SendError(f"failed to send message: {e}", platform="mattermost") from e

    async def download_attachment(self, attachment: Attachment, dest: Path) -> Path:
        try:
            async with self._session.get(
                f"{self.server_url}/api/v4/files/{attachment.ref}", headers=self._headers
            ) as resp:
                if resp.status != 200:
                    raise AttachmentError(
                        f"failed to download file {attachment.ref}, status {resp.status}", platform="mattermost"
                    )
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AttachmentError(f"failed to download file {attachment.ref}: {e}", platform="mattermost") from e
        dest.write_bytes(data)
        return dest

    async def user_name(self, user_id: str) -> str:
        """Username for ``user_id``, from KnownUsers or the API."""
        known = self.known_users.get(user_id)
        if known:
            return known.username
        try:
            async with self._session.get(f"{self.server_url}/api/v4/users/{user_id}", headers=self._headers) as resp:
                if resp.status != 200:
                    return ""
                user = MattermostUser.model_validate(await resp.json(content_type=None))
        except (aiohttp.ClientError, asyncio.TimeoutError, ValidationError) as e:
            self.log(f"user lookup for {user_id} failed: {e}")
            return ""
        self.known_users.put(user_id, user)
        return user.username

    # -- inbound --

    def to_inbound(self, event: MattermostEvent) -> Optional[InboundEvent]:
        """Normalize a websocket event. None for events that are not new posts."""
        if event.event != "posted":
            return None
        post_data = event.data.get("post")
        if not isinstance(post_data, str):
            return None
        try:
            post = MattermostPost.model_validate_json(post_data)
        except ValidationError as e:
            raise DecodeError(f"failed to unmarshal post: {e}", platform="mattermost") from e

        sender = event.data.get("sender_name")
        if isinstance(sender, str) and sender and post.user_id not in self.known_users:
            self.known_users.put(post.user_id, MattermostUser(id=post.user_id, username=sender.lstrip("@")))

        return InboundEvent(
            request=Request(post.message, Platform.MATTERMOST, post.channel_id, post.user_id),
            message_id=post.id,
            attachments=tuple(Attachment(ref=fid, name=fid) for fid in post.file_ids or ()),
        )

    async def handle_event(self, event: MattermostEvent) -> int:
        try:
            inbound = self.to_inbound(event)
        except DecodeError as e:
            self.log(str(e))
            return 0
        if inbound is None:
            return 0
        return await self._dispatch(inbound)

    async def process_messages(self) -> None:
        ws_url = re.sub(r"^http", "ws", self.server_url, count=1) + "/api/v4/websocket"
        try:
            self._ws = await self._session.ws_connect(ws_url, headers=self._headers, heartbeat=30)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.log(f"failed to connect to WebSocket: {e}")
            return

        ws = self._ws
        try:
            await ws.send_json({
                "seq": 1,
                "action": "authentication_challenge",
                "data": {"token": self.token},
            })
            failures = 0
            while not self.stopping:
                msg = await ws.receive()
                if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    self.log("WebSocket connection closed")
                    return
                if msg.type == aiohttp.WSMsgType.ERROR:
                    failures += 1
                    if not await self._recover(failures, ws.exception() or RuntimeError("websocket error")):
                        return
                    continue
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue
                try:
                    event = MattermostEvent.model_validate_json(msg.data)
                except (ValidationError, json.JSONDecodeError) as e:
                    failures += 1
                    if not await self._recover(failures, DecodeError(str(e), platform="mattermost")):
                        return
                    continue
                failures = 0
                await self._handle_safely(self.handle_event, event)
        except (aiohttp.ClientError, ConnectionError) as e:
            if not self.stopping:
                self.log(f"WebSocket failed: {e}")
        finally:
            await ws.close()
            self._ws = None

    async def _shutdown(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._owns_session and not self._session.closed:
            await self._session.close()
