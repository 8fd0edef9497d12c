"""Bridge over the websocket relay: two contexts, one hub, real sockets on localhost."""

import asyncio

import pytest

from lcapbridge.cli.remote import call_remote, serve_platform
from lcapbridge.client.bridge import PopupClient
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.errors import NameNotAllowedError, NotConnectedError, RelayError
from lcapbridge.host.relay import RelayContext, RelayHub
from lcapbridge.host.storage import FileSessionStorage
from lcapbridge.server.listener import RpcListener
from lcapbridge.server.registry import AllowList, FunctionTable

APP_ORIGIN = "http://localhost:3000"
PLATFORM_URL = "https://platform.example.com/app/bridge"
PLATFORM_ORIGIN = "https://platform.example.com"

pytestmark = pytest.mark.relay


async def _eventually(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_peers_are_announced_and_forgotten():
    async with RelayHub() as hub:
        url = f"ws://127.0.0.1:{hub.port}"
        async with RelayContext(url, name="platform", origin=PLATFORM_URL) as platform:
            async with RelayContext(url, name="app", origin=APP_ORIGIN) as app:
                assert app.peers == {"platform": PLATFORM_ORIGIN}
                await _eventually(lambda: "app" in platform.peers)
                assert platform.find("app").origin == APP_ORIGIN
                assert platform.find("platform") is None
            await _eventually(lambda: "app" not in platform.peers)


@pytest.mark.asyncio
async def test_duplicate_name_is_refused():
    async with RelayHub() as hub:
        url = f"ws://127.0.0.1:{hub.port}"
        async with RelayContext(url, name="app", origin=APP_ORIGIN):
            with pytest.raises(RelayError, match="already registered"):
                await RelayContext(url, name="app", origin=APP_ORIGIN).connect()


@pytest.mark.asyncio
async def test_unreachable_relay_raises_relay_error():
    with pytest.raises(RelayError):
        await RelayContext("ws://127.0.0.1:9", name="app", origin=APP_ORIGIN).connect(timeout=1.0)


@pytest.mark.asyncio
async def test_hub_enforces_target_origin_and_stamps_sender_origin():
    async with RelayHub() as hub:
        url = f"ws://127.0.0.1:{hub.port}"
        async with RelayContext(url, name="platform", origin=PLATFORM_URL) as platform, RelayContext(
            url, name="app", origin=APP_ORIGIN
        ) as app:
            received = []
            platform.add_event_listener(received.append)
            handle = app.find("platform")
            handle.post_message({"n": 1}, "https://evil.example")
            handle.post_message({"n": 2}, PLATFORM_ORIGIN)
            await _eventually(lambda: received)
            await asyncio.sleep(0.05)

            assert [e.data for e in received] == [{"n": 2}]
            assert received[0].origin == APP_ORIGIN
            assert received[0].source.name == "app"


@pytest.mark.asyncio
async def test_bridge_round_trip_over_relay(tmp_path):
    functions = FunctionTable()
    rows_seen = []

    def each_row(on_row):
        for row in ("Intro", "Contacts"):
            on_row(row)
        return 2

    functions.expose("_RB.selectQuery", lambda columns, object_name, *rest: [[object_name, len(columns)]])
    functions.expose("_RB.eachRow", each_row)

    async with RelayHub() as hub:
        url = f"ws://127.0.0.1:{hub.port}"
        async with RelayContext(url, name="lcap-dev-bridge", origin=PLATFORM_URL) as platform:
            RpcListener(functions, trusted_origin=APP_ORIGIN, allow_list=AllowList.of(["_RB"])).install(platform)
            storage = FileSessionStorage(tmp_path / "app.json")
            async with RelayContext(url, name="app", origin=APP_ORIGIN, session_storage=storage) as app:
                client = PopupClient(app, PLATFORM_URL, target_origin=PLATFORM_ORIGIN, hello_burst_ms=0)
                client.connect_from_click()
                await client.wait_for_ready(2000, PLATFORM_ORIGIN)

                assert await client.call("_RB.selectQuery", ["id", "name"], "Section", "", 100, True) == [["Section", 2]]
                assert await client.call("_RB.eachRow", rows_seen.append) == 2
                await _eventually(lambda: len(rows_seen) == 2)
                assert rows_seen == ["Intro", "Contacts"]
                with pytest.raises(NameNotAllowedError):
                    await client.call("window.alert")

            assert FileSessionStorage(tmp_path / "app.json")["rb_nonce"] == client.session.nonce


@pytest.mark.asyncio
async def test_open_without_peer_is_refused():
    async with RelayHub() as hub:
        async with RelayContext(f"ws://127.0.0.1:{hub.port}", name="app", origin=APP_ORIGIN) as app:
            assert app.open(PLATFORM_URL, "lcap-dev-bridge") is None


@pytest.mark.asyncio
async def test_wait_closed_returns_after_close():
    async with RelayHub() as hub:
        context = await RelayContext(f"ws://127.0.0.1:{hub.port}", name="app", origin=APP_ORIGIN).connect()
        waiter = asyncio.create_task(context.wait_closed())
        await asyncio.sleep(0.01)
        assert not waiter.done()
        await context.close()
        await asyncio.wait_for(waiter, 1.0)


@pytest.mark.asyncio
async def test_calls_across_processes_keep_the_session_nonce(tmp_path):
    config = BridgeConfig()
    session_path = tmp_path / "sessions" / "app.json"
    async with RelayHub() as hub:
        url = f"ws://127.0.0.1:{hub.port}"
        stop = asyncio.Event()
        server = asyncio.create_task(serve_platform(config, url, stop=stop))
        await _eventually(lambda: "lcap-dev-bridge" in hub.peers())
        assert hub.peers()["lcap-dev-bridge"] == PLATFORM_ORIGIN

        assert await call_remote(config, url, "_RB.countRows", ["Section"], storage_path=session_path) == 3
        nonce = FileSessionStorage(session_path)["rb_nonce"]

        view = await call_remote(config, url, "rbf_getViewPage", ["v-1"], app_name="app-2", storage_path=session_path)
        assert view == {"viewId": "v-1", "title": "View v-1"}
        assert FileSessionStorage(session_path)["rb_nonce"] == nonce

        with pytest.raises(NameNotAllowedError):
            await call_remote(config, url, "window.alert", [], app_name="app-3", storage_path=tmp_path / "other.json")

        stop.set()
        await asyncio.wait_for(server, 1.0)
        await _eventually(lambda: "lcap-dev-bridge" not in hub.peers())


@pytest.mark.asyncio
async def test_call_without_platform_endpoint_is_not_connected(tmp_path):
    async with RelayHub() as hub:
        with pytest.raises(NotConnectedError, match="serve-demo"):
            await call_remote(
                BridgeConfig(), f"ws://127.0.0.1:{hub.port}", "_RB.countRows", ["Section"], storage_path=tmp_path / "s.json"
            )
