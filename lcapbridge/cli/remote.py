"""Bridge calls across processes: a platform endpoint and a one-shot caller on a relay hub."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from loguru import logger

from lcapbridge.cli.demo import build_function_table, with_platform
from lcapbridge.client.bridge import PopupClient
from lcapbridge.config.loader import get_data_dir
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.errors import NotConnectedError
from lcapbridge.host.relay import RelayContext
from lcapbridge.host.storage import FileSessionStorage
from lcapbridge.server.listener import RpcListener
from lcapbridge.server.registry import FunctionTable


def session_file(app_name: str) -> Path:
    """Session storage of a caller, kept between runs so its nonce survives."""
    return get_data_dir() / "sessions" / f"{app_name}.json"


async def serve_platform(
    config: BridgeConfig,
    relay_url: str,
    *,
    functions: FunctionTable | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    """Join the relay under the client window name and answer calls until stopped."""
    config = with_platform(config)
    async with RelayContext(
        relay_url,
        name=config.client.window_name,
        origin=config.client.resolve_target_origin(),
    ) as context:
        listener = RpcListener.from_config(functions if functions is not None else build_function_table(), config)
        listener.install(context)
        waiters = [asyncio.ensure_future(context.wait_closed())]
        if stop is not None:
            waiters.append(asyncio.ensure_future(stop.wait()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            listener.uninstall()
    logger.info("platform endpoint {} left {}", config.client.window_name, relay_url)


async def call_remote(
    config: BridgeConfig,
    relay_url: str,
    name: str,
    args: list[Any],
    *,
    app_name: str = "app",
    storage_path: Path | None = None,
) -> Any:
    """Attach to the platform endpoint already on the relay and make one call.

    The caller registers with the app origin the listener trusts. No user
    gesture exists here, so only an existing endpoint can be used.
    """
    config = with_platform(config)
    storage = FileSessionStorage(storage_path or session_file(app_name))
    async with RelayContext(
        relay_url,
        name=app_name,
        origin=config.server.trusted_origin,
        session_storage=storage,
    ) as context:
        client = PopupClient.from_config(context, config)
        if not client.attach_to_existing():
            raise NotConnectedError(
                f"No platform endpoint named {client.session.window_name} on {relay_url}. "
                "Start one with `lcapbridge serve-demo`."
            )
        await client.wait_for_ready(config.readiness.connect_timeout_ms, client.session.target_origin)
        return await client.call(name, *args)
