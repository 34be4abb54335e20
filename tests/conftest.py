from __future__ import annotations

import json
from typing import Any, Callable

import aiohttp
import pytest

from vortex.adapters.convex_peer import PeerClient


class FakeResponse:
    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        if isinstance(body, str):
            body = body.encode("utf-8")
        elif not isinstance(body, bytes):
            body = json.dumps(body).encode("utf-8")
        self._raw = body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *_: Any) -> None:
        pass

    async def read(self) -> bytes:
        return self._raw

    async def text(self) -> str:
        return self._raw.decode("utf-8")

    async def json(self, content_type: str | None = None) -> Any:
        return json.loads(self._raw)


class FakePeerHttp:
    """Stands in for aiohttp.ClientSession; replies are keyed by URL suffix.

    Each reply is ``(status, body)`` or an exception to raise.  A queue with
    one entry left keeps replaying it.
    """

    def __init__(self, replies: dict[str, list[Any]]) -> None:
        self._replies = {k: list(v) for k, v in replies.items()}
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def _reply(self, method: str, url: str, body: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, "json": body})
        for suffix, queue in self._replies.items():
            if url.endswith(suffix):
                reply = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(reply, BaseException):
                    raise reply
                status, payload = reply
                return FakeResponse(status, payload)
        raise aiohttp.ClientConnectionError(f"no route for {url}")

    def post(self, url: str, json: Any = None, **_: Any) -> FakeResponse:
        return self._reply("POST", url, json)

    def get(self, url: str, **_: Any) -> FakeResponse:
        return self._reply("GET", url, None)

    async def close(self) -> None:
        self.closed = True

    def sources(self) -> list[str]:
        return [c["json"]["source"] for c in self.calls if c["json"] and "source" in c["json"]]


@pytest.fixture
def peer_http(monkeypatch: Any) -> Callable[[dict[str, list[Any]]], FakePeerHttp]:
    """Route every PeerClient HTTP call to a FakePeerHttp built from *replies*."""

    def _install(replies: dict[str, list[Any]]) -> FakePeerHttp:
        http = FakePeerHttp(replies)
        monkeypatch.setattr(PeerClient, "_make_session", lambda self: http)
        return http

    return _install
