import pytest

from lcapbridge.client.requests import RequestRouter
from lcapbridge.config.access import set_config
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.errors import NotAFunctionError
from lcapbridge.server.registry import FunctionTable


def _table():
    table = FunctionTable()
    table.expose("_RB.selectQuery", lambda columns, object_name, where="": [[c for c in columns], object_name])

    async def slow_count(object_name):
        return 3

    table.expose("_RB.countRows", slow_count)
    return table


def test_mode_needs_its_dependency():
    with pytest.raises(ValueError):
        RequestRouter(mode="bridge")
    with pytest.raises(ValueError):
        RequestRouter(mode="local")


@pytest.mark.asyncio
async def test_local_mode_calls_table_directly():
    router = RequestRouter(mode="local", functions=_table())
    assert await router.make_request("_RB.selectQuery", ["id"], "Section") == [["id"], "Section"]
    assert await router.make_request("_RB.countRows", "Section") == 3
    with pytest.raises(NotAFunctionError):
        await router.make_request("_RB.nothing")


@pytest.mark.asyncio
async def test_bridge_mode_goes_through_client(make_bridge):
    bridge = make_bridge()
    await bridge.connect()
    router = RequestRouter(mode="bridge", client=bridge.client)
    assert await router.make_request("_RB.echo", "a", 1) == ["a", 1]


def test_from_config_picks_mode():
    cfg = BridgeConfig()
    cfg.client.mode = "local"
    router = RequestRouter.from_config(cfg, functions=_table())
    assert router.mode == "local"


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError, match="unknown request mode"):
        RequestRouter(mode="remote", functions=_table())


@pytest.mark.asyncio
async def test_local_mode_does_not_need_a_client():
    router = RequestRouter(mode="local", functions=_table())
    assert router.client is None
    assert await router.make_request("_RB.countRows", "Section") == 3


def test_from_config_falls_back_to_process_config(config_home):
    cfg = BridgeConfig()
    cfg.client.mode = "local"
    set_config(cfg)
    assert RequestRouter.from_config(functions=_table()).mode == "local"
