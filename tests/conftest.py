"""Shared test fixtures."""

import httpx
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from libsql_client.hrana.http import HttpClient
from libsql_client.hrana.ws import WsClient
from libsql_client.sqlite_backend import SqliteClient
from tests.hrana_server import FakeHranaServer


@pytest.fixture
def hrana_server(tmp_path):
    """Fake Hrana server over a fresh SQLite file."""
    return FakeHranaServer(tmp_path / "server.db")


@pytest_asyncio.fixture
async def ws_url(hrana_server):
    """URL of the fake server's WebSocket endpoint."""
    server = TestServer(hrana_server.ws_app())
    await server.start_server()
    yield f"ws://{server.host}:{server.port}/"
    await server.close()


@pytest_asyncio.fixture
async def http_client(hrana_server):
    """HTTP client talking to the fake server through httpx.MockTransport."""
    async with httpx.AsyncClient(transport=hrana_server.http_transport()) as http:
        client = HttpClient("http://hrana.test", http_client=http)
        yield client
        await client.close()


@pytest_asyncio.fixture
async def ws_client(ws_url):
    """WebSocket client connected to the fake server."""
    client = WsClient(ws_url)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def sqlite_client(tmp_path):
    """Local client over a SQLite file."""
    client = SqliteClient(str(tmp_path / "local.db"))
    yield client
    await client.close()


@pytest_asyncio.fixture(params=["http", "ws", "file"])
async def client(request, tmp_path):
    """Client for each transport, for behavior that must not depend on it."""
    if request.param == "file":
        c = SqliteClient(str(tmp_path / "local.db"))
        yield c
        await c.close()
        return

    server = FakeHranaServer(tmp_path / "server.db")
    if request.param == "http":
        async with httpx.AsyncClient(transport=server.http_transport()) as http:
            c = HttpClient("http://hrana.test", http_client=http)
            yield c
            await c.close()
        return

    test_server = TestServer(server.ws_app())
    await test_server.start_server()
    c = WsClient(f"ws://{test_server.host}:{test_server.port}/")
    yield c
    await c.close()
    await test_server.close()


@pytest_asyncio.fixture(params=["ws", "file"])
async def txn_client(request, tmp_path):
    """Client for each transport that supports interactive transactions."""
    if request.param == "file":
        c = SqliteClient(str(tmp_path / "local.db"))
        yield c
        await c.close()
        return

    server = FakeHranaServer(tmp_path / "server.db")
    test_server = TestServer(server.ws_app())
    await test_server.start_server()
    c = WsClient(f"ws://{test_server.host}:{test_server.port}/")
    yield c
    await c.close()
    await test_server.close()
