"""Pytest hooks and fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import pytest

from lcapbridge.client.bridge import PopupClient
from lcapbridge.config.access import clear_config_cache
from lcapbridge.host.memory import LocalContext, WindowHost
from lcapbridge.server.listener import RpcListener
from lcapbridge.server.registry import AllowList, FunctionTable

APP_URL = "http://localhost:3000/"
APP_ORIGIN = "http://localhost:3000"
PLATFORM_URL = "https://platform.example.com/app/bridge"
PLATFORM_ORIGIN = "https://platform.example.com"


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "relay: starts a local websocket relay hub on an ephemeral port",
    )


@dataclass
class Bridge:
    """An app tab, its client and the platform pages loaded so far."""

    host: WindowHost
    tab: LocalContext
    client: PopupClient
    functions: FunctionTable
    listeners: list[RpcListener] = field(default_factory=list)

    @property
    def popup(self) -> LocalContext | None:
        return self.host.get(self.client.session.window_name)

    @property
    def listener(self) -> RpcListener:
        return self.listeners[-1]

    async def connect(self, timeout_ms: int = 1000) -> dict[str, Any]:
        with self.host.user_activation():
            self.client.connect_from_click()
        ready = await self.client.wait_for_ready(timeout_ms, PLATFORM_ORIGIN)
        await self.host.settle()
        return ready


@pytest.fixture
def functions() -> FunctionTable:
    table = FunctionTable()
    table.expose("_RB.echo", lambda *args: list(args))
    table.expose("rbf_getViewPage", lambda view_id: {"viewId": view_id})
    return table


@pytest.fixture
def make_bridge(functions: FunctionTable) -> Callable[..., Bridge]:
    def _make(
        *,
        load_listener: bool = True,
        listener_delay: float = 0.0,
        allowed_roots: tuple[str, ...] = ("_RB", "rbf_getViewPage"),
        **client_options: Any,
    ) -> Bridge:
        host = WindowHost()
        tab = host.create_context(APP_URL, name="app")
        client_options.setdefault("hello_burst_ms", 0)
        client = PopupClient(tab, PLATFORM_URL, target_origin=PLATFORM_ORIGIN, **client_options)
        bridge = Bridge(host=host, tab=tab, client=client, functions=functions)

        def _platform_page(context: LocalContext) -> None:
            listener = RpcListener(
                functions,
                trusted_origin=APP_ORIGIN,
                allow_list=AllowList.of(allowed_roots),
            )
            listener.install(context)
            bridge.listeners.append(listener)

        if load_listener:
            host.register_page(PLATFORM_URL, _platform_page, delay=listener_delay)
        return bridge

    return _make


@pytest.fixture
def config_home(tmp_path, monkeypatch):
    """Point ~ (and so ~/.lcapbridge) at a temp dir with an empty config cache."""
    monkeypatch.setenv("HOME", str(tmp_path))
    clear_config_cache()
    yield tmp_path
    clear_config_cache()
