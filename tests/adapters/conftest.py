"""Fake aiohttp session shared by the adapter tests."""

from types import SimpleNamespace

import aiohttp
import pytest


class FakeResponse:
    def __init__(self, data=None, status=200, body=b""):
        self._data = data
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        return self._data

    async def text(self):
        return str(self._data)

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class FakeSession:
    """Replays queued responses and records every call as (method, url, kwargs).

    A queued dict or list is a 200 JSON body, ``(status, data)`` sets the
    status, bytes are a raw body and an exception is raised from the call.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []
        self.closed = False
        self.websocket = None

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, FakeResponse):
            return item
        if isinstance(item, tuple):
            status, data = item
            return FakeResponse(data, status=status)
        if isinstance(item, bytes):
            return FakeResponse(body=item)
        return FakeResponse(item)

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    async def ws_connect(self, url, **kwargs):
        self.calls.append(("WS", url, kwargs))
        return self.websocket

    async def close(self):
        self.closed = True


class FakeWebSocket:
    """Replays queued frames, then reports the socket closed."""

    def __init__(self, *frames):
        self.frames = list(frames)
        self.sent = []
        self.closed = False

    async def send_json(self, data):
        self.sent.append(data)

    async def receive(self):
        if self.frames:
            return self.frames.pop(0)
        return SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None)

    def exception(self):
        return None

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    def make(*responses):
        return FakeSession(responses)
    return make


@pytest.fixture
def fake_websocket():
    def make(*texts):
        return FakeWebSocket(*(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=text) for text in texts))
    return make
