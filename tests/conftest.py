import asyncio
from datetime import datetime, timezone

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import unused_port

from oce_status.models import ServerConfig

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)

GOOD_PAYLOAD = {
    "allies": 12,
    "axis": 9,
    "alliesScore": 2,
    "axisScore": 3,
    "gameTime": "45:10",
    "map": "Carentan",
    "nextMap": "Foy",
}


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def make_config():
    def factory(server_id: str = "eu-1", endpoint: str = "http://127.0.0.1:1/", name: str | None = None):
        return ServerConfig(id=server_id, name=name or server_id.upper(), endpoint=endpoint)
    return factory


class FakeGameAPI:
    """
    A local stats API with one route per failure mode.

    `live` serves whatever is in `payload`, so tests can change the data
    between rounds. `slow_delay` controls how long /slow stalls.
    """

    def __init__(self) -> None:
        self.payload: dict = dict(GOOD_PAYLOAD)
        self.slow_delay = 1.0
        self.hits: dict[str, int] = {}
        self.accept_headers: list[str] = []
        self.server = None

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/live", self._live)
        app.router.add_get("/ok", self._ok)
        app.router.add_get("/slow", self._slow)
        app.router.add_get("/unavailable", self._unavailable)
        app.router.add_get("/garbage", self._garbage)
        app.router.add_get("/placeholder", self._placeholder)
        app.router.add_get("/empty", self._empty)
        return app

    def _count(self, request: web.Request) -> None:
        self.hits[request.path] = self.hits.get(request.path, 0) + 1
        self.accept_headers.append(request.headers.get("Accept", ""))

    async def _live(self, request):
        self._count(request)
        return web.json_response(self.payload)

    async def _ok(self, request):
        self._count(request)
        return web.json_response(GOOD_PAYLOAD)

    async def _slow(self, request):
        self._count(request)
        await asyncio.sleep(self.slow_delay)
        return web.json_response(GOOD_PAYLOAD)

    async def _unavailable(self, request):
        self._count(request)
        return web.json_response({"error": "maintenance"}, status=503)

    async def _garbage(self, request):
        self._count(request)
        return web.Response(text="<html>not json</html>", content_type="text/html")

    async def _placeholder(self, request):
        self._count(request)
        return web.json_response({"userId": 1, "id": 1, "title": "delectus aut autem"})

    async def _empty(self, request):
        self._count(request)
        return web.json_response({})


@pytest.fixture
async def game_api(aiohttp_server):
    api = FakeGameAPI()
    api.server = await aiohttp_server(api.app())
    return api


@pytest.fixture
async def session():
    async with aiohttp.ClientSession() as s:
        yield s


@pytest.fixture
def unused_port_url():
    # nothing listens here, so connecting fails immediately
    return f"http://127.0.0.1:{unused_port()}/stats"
