"""Await the first READY of a tab, shared by every consumer of that tab."""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from lcapbridge.errors import TimeoutError
from lcapbridge.host.context import BrowsingContext, MessageEvent
from lcapbridge.protocol import READY

READY_SLOT = "__lcap_ready__"


class ReadinessWaiter:
    """Caches the first READY seen by a tab and coalesces concurrent waits."""

    def __init__(self, context: BrowsingContext):
        self.context = context
        self._ready = False
        self._inflight: asyncio.Future[dict[str, Any]] | None = None

    @classmethod
    def for_context(cls, context: BrowsingContext) -> "ReadinessWaiter":
        waiter = context.namespace.get(READY_SLOT)
        if not isinstance(waiter, cls):
            waiter = cls(context)
            context.namespace[READY_SLOT] = waiter
        return waiter

    def is_ready(self) -> bool:
        return self._ready

    @property
    def waiting(self) -> bool:
        return self._inflight is not None

    async def wait_for_ready(self, timeout_ms: int = 15000, expected_origin: str | None = None) -> dict[str, Any]:
        """Resolve with the READY payload, or raise TimeoutError after ``timeout_ms``.

        Later callers join a wait already in flight (its timeout and origin
        apply). Once READY has been seen, returns a cached marker at once.
        """
        if self._ready:
            return {"type": READY, "cached": True}
        if self._inflight is None:
            self._inflight = self._start(timeout_ms, expected_origin)
        return await asyncio.shield(self._inflight)

    def _start(self, timeout_ms: int, expected_origin: str | None) -> asyncio.Future[dict[str, Any]]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        context = self.context

        def _cleanup() -> None:
            timer.cancel()
            context.remove_event_listener(_on_message)
            if self._inflight is future:
                self._inflight = None

        def _on_message(event: MessageEvent) -> None:
            if expected_origin and event.origin != expected_origin:
                return
            data = event.data
            if not isinstance(data, dict) or data.get("type") != READY:
                return
            self._ready = True
            _cleanup()
            if not future.done():
                future.set_result(dict(data))

        def _on_timeout() -> None:
            _cleanup()
            if not future.done():
                logger.info("[{}] no READY within {}ms", context.name, timeout_ms)
                future.set_exception(
                    TimeoutError(
                        "Timed out waiting for LCAP_READY",
                        operation="wait_for_ready",
                        timeout_seconds=timeout_ms / 1000.0,
                    )
                )

        timer = loop.call_later(timeout_ms / 1000.0, _on_timeout)
        context.add_event_listener(_on_message)
        return future
