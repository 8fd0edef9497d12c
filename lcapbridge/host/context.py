"""Browsing-context abstraction shared by the in-memory and relay hosts."""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlsplit

from loguru import logger

from lcapbridge.host.storage import MemoryStorage

MessageListener = Callable[["MessageEvent"], Any]

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}


def origin_of(url: str) -> str:
    """Serialize the origin (scheme://host[:port]) of ``url``.

    Default ports are omitted, matching how browsers report ``event.origin``.
    Returns ``"null"`` for URLs without a scheme or host.
    """
    parts = urlsplit(url or "")
    if not parts.scheme or not parts.hostname:
        return "null"
    scheme = parts.scheme.lower()
    host = parts.hostname.lower()
    port = parts.port
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def origin_matches(target_origin: str, receiver_origin: str) -> bool:
    """postMessage targetOrigin rule: ``"*"`` or an exact origin match."""
    if target_origin == "*":
        return True
    return origin_of(target_origin) == receiver_origin


@dataclass(slots=True)
class MessageEvent:
    """A delivered message: the sender's origin, the cloned data and a handle back."""

    origin: str
    data: Any
    source: "ContextHandle | None" = None


class ContextHandle(ABC):
    """A handle to another context, held by the local one."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def closed(self) -> bool: ...

    @abstractmethod
    def post_message(self, data: Any, target_origin: str) -> None:
        """Queue ``data`` for delivery; dropped when the receiver's origin differs."""

    def focus(self) -> None:
        return None


class BrowsingContext(ABC):
    """The local context code runs in (the "tab").

    ``namespace`` plays the part of the tab's global object: it survives a
    code reload and is cleared on a full reload. ``session_storage`` survives
    both.
    """

    def __init__(self, *, name: str, origin: str, session_storage: MutableMapping[str, str] | None = None):
        self.name = name
        self.origin = origin
        self.namespace: dict[str, Any] = {}
        self.session_storage: MutableMapping[str, str] = (
            session_storage if session_storage is not None else MemoryStorage()
        )
        self._listeners: list[MessageListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    @abstractmethod
    def open(self, url: str, name: str) -> ContextHandle | None:
        """Open or focus the context named ``name``; None when refused."""

    @abstractmethod
    def find(self, name: str) -> ContextHandle | None:
        """Handle to an already-open context named ``name``, without opening one."""

    def add_event_listener(self, listener: MessageListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_event_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch_event(self, event: MessageEvent) -> None:
        """Run every listener on ``event``; coroutine listeners become tasks.

        A failing listener is logged and does not stop the others.
        """
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
            except Exception:
                logger.exception("[{}] message listener failed", self.name)
                continue
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("[{}] async message listener failed", self.name)

    async def drain(self) -> None:
        """Wait for listener tasks spawned so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def reset_page(self) -> None:
        """Forget page state (listeners and namespace) as a full reload does."""
        self._listeners.clear()
        self.namespace.clear()
