import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep test runs from writing logs/ into the checkout
os.environ.setdefault("CHAT_LOG_DIR", str(Path(tempfile.gettempdir()) / "chat_client_test_logs"))

_CLOSE = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: List[str] = []
        self.closed = False
        self.fail_sends = False

    def push(self, frame) -> None:
        self.inbound.put_nowait(frame)

    def drop(self) -> None:
        """Simulate an abnormal close (no close frame)."""
        self.closed = True
        self.inbound.put_nowait(ConnectionClosedError(None, None))

    async def send(self, data: str) -> None:
        if self.closed or self.fail_sends:
            raise ConnectionClosedOK(None, None)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.closed = True
            self.inbound.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.inbound.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnector:
    """Awaitable replacement for websockets.connect."""

    def __init__(self, fail: Optional[BaseException] = None) -> None:
        self.fail = fail
        self.urls: List[str] = []
        self.sockets: List[FakeWebSocket] = []
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, url: str, **kwargs) -> FakeWebSocket:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]


def mock_http(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def wait_for(predicate, timeout: float = 2.0) -> bool:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def users_backend():
    """A /api/users endpoint whose response the test can swap out; counts calls."""

    class UsersBackend:
        def __init__(self) -> None:
            self.calls = 0
            self.body = {"usersDetailed": []}
            self.status = 200

        def handler(self, request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/users"
            self.calls += 1
            return httpx.Response(self.status, json=self.body)

        def client(self) -> httpx.AsyncClient:
            return mock_http(self.handler)

    return UsersBackend()
