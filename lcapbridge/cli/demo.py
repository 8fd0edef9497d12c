"""In-memory end-to-end run: an app tab drives a platform popup through the bridge."""

from __future__ import annotations

from typing import Any, Callable

from loguru import logger

from lcapbridge.client.bridge import PopupClient
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.errors import BridgeError
from lcapbridge.host.memory import LocalContext, WindowHost
from lcapbridge.server.listener import RpcListener
from lcapbridge.server.registry import FunctionTable

DEMO_PLATFORM_URL = "https://platform.example.com/app/bridge"


class SampleRecords:
    """A tiny record store shaped like the platform's ``_RB`` query API."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]]):
        self._tables = tables

    def selectQuery(
        self,
        columns: list[str],
        object_name: str,
        where: str = "",
        max_rows: int = 1000,
        use_ids: bool = False,
    ) -> list[list[Any]]:
        rows = self._tables.get(object_name, [])
        if where:
            field, _, value = (part.strip() for part in where.partition("="))
            rows = [row for row in rows if str(row.get(field)) == value]
        return [[row.get(col) for col in columns] for row in rows[: max(0, int(max_rows))]]

    def countRows(self, object_name: str) -> int:
        return len(self._tables.get(object_name, []))

    def eachRow(self, object_name: str, on_row: Callable[[dict[str, Any]], None]) -> int:
        rows = self._tables.get(object_name, [])
        for row in rows:
            on_row(row)
        return len(rows)


def with_platform(config: BridgeConfig) -> BridgeConfig:
    """``config``, or a copy pointing at the sample platform when no platform is configured."""
    if config.client.platform_url or config.client.target_origin:
        return config
    cfg = config.model_copy(deep=True)
    cfg.client.platform_url = DEMO_PLATFORM_URL
    return cfg


def sample_tables() -> dict[str, list[dict[str, Any]]]:
    return {
        "Section": [
            {"id": 1, "name": "Intro", "order": 1},
            {"id": 2, "name": "Contacts", "order": 2},
            {"id": 3, "name": "Escalation", "order": 3},
        ],
        "$SETTINGS": [{"id": 1, "eb_client_id": "demo-client"}],
    }


def build_function_table(records: SampleRecords | None = None) -> FunctionTable:
    table = FunctionTable()
    table.expose_namespace("_RB", records or SampleRecords(sample_tables()))
    table.expose("rbf_getViewPage", lambda view_id: {"viewId": view_id, "title": f"View {view_id}"})
    return table


async def run_demo(config: BridgeConfig, *, on_line: Callable[[str, Any], None]) -> list[tuple[str, Any]]:
    """Open a popup, handshake, make a few calls and report each outcome via ``on_line``."""
    config = with_platform(config)
    app_origin = config.server.trusted_origin
    platform_url = config.client.platform_url or DEMO_PLATFORM_URL
    host = WindowHost()
    functions = build_function_table()

    def _platform_page(context: LocalContext) -> None:
        RpcListener.from_config(functions, config).install(context)

    host.register_page(platform_url, _platform_page)
    tab = host.create_context(app_origin + "/", name="app")
    client = PopupClient(
        tab,
        platform_url,
        target_origin=config.client.resolve_target_origin(),
        window_name=config.client.window_name,
        timeout_mins=config.client.timeout_mins,
        default_root=config.client.default_root,
        hello_interval_ms=config.client.hello_interval_ms,
        hello_burst_ms=0,
        max_callbacks=config.callbacks.max_entries,
        callback_ttl_seconds=config.callbacks.ttl_seconds,
    )

    outcomes: list[tuple[str, Any]] = []

    def _report(label: str, value: Any) -> None:
        outcomes.append((label, value))
        on_line(label, value)

    with host.user_activation():
        client.connect_from_click()
    ready = await client.wait_for_ready(config.readiness.connect_timeout_ms, client.session.target_origin)
    _report("ready", ready)

    streamed: list[Any] = []
    calls: list[tuple[str, tuple[Any, ...]]] = [
        ("_RB.selectQuery", (["id", "name"], "Section", "", 100, True)),
        ("_RB.countRows", ("Section",)),
        ("_RB.eachRow", ("Section", lambda row: streamed.append(row["name"]))),
        ("rbf_getViewPage", ("v-42",)),
        ("window.alert", ("not allowed",)),
    ]
    for name, args in calls:
        try:
            _report(name, await client.call(name, *args))
        except BridgeError as exc:
            logger.debug("demo call {} rejected: {}", name, exc.code)
            _report(name, exc)
    await host.settle()
    _report("callbacks", streamed)
    return outcomes
