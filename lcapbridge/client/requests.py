"""Single entry point for consumers: through the bridge, or in-process when already privileged."""

from __future__ import annotations

from typing import Any, Literal

from loguru import logger

from lcapbridge.client.bridge import PopupClient
from lcapbridge.config.access import get_config
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.server.registry import FunctionTable

RequestMode = Literal["bridge", "local"]


class RequestRouter:
    """Routes ``make_request`` calls.

    In ``bridge`` mode (development, app served from its own origin) calls go
    through the popup client. In ``local`` mode (app embedded in the platform
    page) the function table is invoked directly.
    """

    def __init__(
        self,
        *,
        mode: RequestMode = "bridge",
        client: PopupClient | None = None,
        functions: FunctionTable | None = None,
    ):
        if mode == "bridge":
            if client is None:
                raise ValueError("bridge mode needs a PopupClient")
            self._send = client.call
        elif mode == "local":
            if functions is None:
                raise ValueError("local mode needs a FunctionTable")
            self._send = functions.call
        else:
            raise ValueError(f"unknown request mode: {mode!r}")
        self.mode = mode
        self.client = client
        self.functions = functions

    async def make_request(self, query: str, *params: Any) -> Any:
        try:
            return await self._send(query, *params)
        except Exception:
            logger.opt(exception=True).error("request {} failed ({} mode)", query, self.mode)
            raise

    @classmethod
    def from_config(
        cls,
        config: BridgeConfig | None = None,
        *,
        client: PopupClient | None = None,
        functions: FunctionTable | None = None,
    ) -> "RequestRouter":
        if config is None:
            config = get_config()
        return cls(mode=config.client.mode, client=client, functions=functions)
