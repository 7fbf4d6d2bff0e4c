import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
import websockets

from client.config import ClientConfig
from client.state import ConnectionState, PresenceEntry
from client.ws_client import ConnectionManager

from conftest import mock_http, wait_for

TS = "2024-05-01T10:20:30.123456789Z"


async def chat_backend(ws):
    """Minimal backend: welcome, join broadcast, then echo chat back to the sender."""
    query = parse_qs(urlsplit(ws.request.path).query)
    username = query.get("username", ["Anonymous"])[0]
    await ws.send(json.dumps({
        "type": "welcome", "userId": "1", "username": username,
        "content": "Welcome to the chat!", "timestamp": TS,
    }))
    await ws.send(json.dumps({
        "type": "join", "userId": "1", "username": username,
        "content": f"{username} (1) joined the chat", "timestamp": TS,
    }))
    async for message in ws:
        data = json.loads(message)
        await ws.send(json.dumps({
            "type": "chat", "userId": "1", "username": username,
            "content": data.get("content", ""), "timestamp": TS,
        }))


@pytest.mark.asyncio
async def test_session_against_real_websocket_backend():
    def users(request):
        return httpx.Response(200, json={"users": ["Alice Smith"], "usersDetailed": [{"id": "1", "username": "Alice Smith"}], "count": 1})

    async with websockets.serve(chat_backend, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        config = ClientConfig(f"http://127.0.0.1:{port}", poll_interval=0.05)

        async with ConnectionManager(config, http_client=mock_http(users)) as manager:
            await manager.connect("Alice Smith")
            await manager.wait_for_state(ConnectionState.CONNECTED, timeout=5.0)
            assert await wait_for(lambda: manager.self_id == "1", timeout=5.0)
            assert await wait_for(lambda: manager.view().presence == (PresenceEntry("1", "Alice Smith"),), timeout=5.0)

            assert await manager.send("  hello  ") is True
            assert await wait_for(lambda: manager.view().events[-1].content == "hello", timeout=5.0)

            view = manager.view()
            assert view.events[1].actor_name == "Alice Smith"
            assert view.events[1].timestamp.microsecond == 123456
            assert view.is_mine(view.events[-1])

            await manager.disconnect()
            await manager.wait_for_state(ConnectionState.DISCONNECTED, timeout=5.0)
            await manager.drain()

            assert [e.kind for e in manager.view().events] == ["system", "welcome", "join", "chat", "system"]
            assert manager.view().presence == ()
