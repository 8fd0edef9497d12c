"""Connect / restore / proceed flow of the connector panel, without the panel."""

from __future__ import annotations

import inspect
from typing import Any, Callable

from loguru import logger

from lcapbridge.client.bridge import PopupClient
from lcapbridge.client.persistence import SessionPersistence
from lcapbridge.config.access import get_config
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.errors import BridgeError, TimeoutError


class ConnectionFlow:
    """State behind a "Connect" / "Proceed" pair of buttons.

    ``handle_connect`` must be awaited from inside the user activation of the
    click; ``restore`` runs once when the page loads.
    """

    def __init__(
        self,
        client: PopupClient,
        *,
        platform_origin: str,
        on_proceed: Callable[[], Any] | None = None,
        connect_timeout_ms: int = 15000,
        silent_timeout_ms: int = 1200,
    ):
        if not platform_origin:
            raise ValueError("platform_origin must be the exact platform origin")
        self.client = client
        self.platform_origin = platform_origin
        self.on_proceed = on_proceed
        self.connect_timeout_ms = connect_timeout_ms
        self.silent_timeout_ms = silent_timeout_ms
        self.persistence = SessionPersistence(client.context.session_storage)
        self.ready = False
        self.error: str | None = None
        self._auto_proceeded = False

    @classmethod
    def from_config(
        cls,
        client: PopupClient,
        config: BridgeConfig | None = None,
        *,
        on_proceed: Callable[[], Any] | None = None,
    ) -> "ConnectionFlow":
        if config is None:
            config = get_config()
        # READY must come from the origin the client posts to.
        return cls(
            client,
            platform_origin=client.session.target_origin,
            on_proceed=on_proceed,
            connect_timeout_ms=config.readiness.connect_timeout_ms,
            silent_timeout_ms=config.readiness.silent_timeout_ms,
        )

    async def handle_connect(self) -> bool:
        """Connect (popup + handshake) and remember the tab as connected."""
        try:
            if not self.ready:
                self.client.connect_from_click()
            await self.client.wait_for_ready(self.connect_timeout_ms, self.platform_origin)
        except BridgeError as exc:
            self.error = str(exc)
            self.persistence.invalidate()
            logger.warning("connect failed: {}", self.error)
            return False
        self.ready = True
        self.error = None
        self.persistence.mark_connected(self.platform_origin)
        return True

    async def handle_proceed(self) -> None:
        """Explicit user action: remember it for later reloads and proceed."""
        self.persistence.mark_proceeded()
        await self._proceed()

    async def restore(self) -> bool:
        """Silent fast path on load: probe the remembered origin, no click needed."""
        if self.persistence.was_ready:
            origin = self.persistence.remembered_origin(self.platform_origin)
            if self.client.is_connected():
                self.ready = True
            else:
                try:
                    await self.client.wait_for_ready(self.silent_timeout_ms, origin)
                except TimeoutError:
                    # Not actually alive: fall back to an explicit connect.
                    self.persistence.invalidate()
                    logger.info("silent reconnect to {} failed", origin)
                else:
                    self.ready = True
                    self.error = None
        await self._maybe_auto_proceed()
        return self.ready

    async def _maybe_auto_proceed(self) -> None:
        if self.ready and self.persistence.has_proceeded and not self._auto_proceeded:
            self._auto_proceeded = True
            await self._proceed()

    async def _proceed(self) -> None:
        if self.on_proceed is None:
            return
        outcome = self.on_proceed()
        if inspect.isawaitable(outcome):
            await outcome
