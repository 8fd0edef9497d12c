"""In-process browsing-context host driven by the running asyncio loop.

Models the parts of a browser the bridge relies on: named contexts opened
only during a user activation, asynchronous ``post_message`` delivery with
structured cloning and ``target_origin`` checks, page scripts that load
(possibly late) when a context navigates, and full reloads that keep
session storage.
"""

from __future__ import annotations

import asyncio
import itertools
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from loguru import logger

from lcapbridge.host.context import (
    BrowsingContext,
    ContextHandle,
    MessageEvent,
    origin_matches,
    origin_of,
)
from lcapbridge.serialization import structured_clone

PageLoader = Callable[["LocalContext"], None]


@dataclass(slots=True)
class _Page:
    loader: PageLoader
    delay: float = 0.0


@dataclass(slots=True)
class TraceEntry:
    """One accepted post: who sent what to whom."""

    sender: str
    target: str
    data: Any


class LocalContext(BrowsingContext):
    """A context living inside a WindowHost."""

    def __init__(self, host: "WindowHost", *, name: str, url: str, opener: "LocalContext | None" = None):
        super().__init__(name=name, origin=origin_of(url))
        self.host = host
        self.url = url
        self.opener = opener
        self.closed = False

    def open(self, url: str, name: str) -> ContextHandle | None:
        return self.host._open_from(self, url, name)

    def find(self, name: str) -> ContextHandle | None:
        target = self.host.get(name)
        if target is None or target is self:
            return None
        return WindowProxy(target, holder=self)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._listeners.clear()
        self.host._forget(self)
        logger.debug("[{}] context closed", self.name)

    def reload(self) -> None:
        """Full reload: page state goes away, session storage stays, page scripts rerun."""
        self.reset_page()
        self.host._load(self)

    def navigate(self, url: str) -> None:
        self.url = url
        self.origin = origin_of(url)
        self.reload()

    def __repr__(self) -> str:
        return f"LocalContext(name={self.name!r}, origin={self.origin!r}, closed={self.closed})"


class WindowProxy(ContextHandle):
    """Handle to ``target`` as seen from ``holder``; posts are sent on behalf of ``holder``."""

    def __init__(self, target: LocalContext, holder: LocalContext):
        self._target = target
        self._holder = holder

    @property
    def name(self) -> str:
        return self._target.name

    @property
    def origin(self) -> str:
        return self._target.origin

    @property
    def closed(self) -> bool:
        return self._target.closed

    @property
    def target(self) -> LocalContext:
        return self._target

    def post_message(self, data: Any, target_origin: str) -> None:
        self._target.host._deliver(self._holder, self._target, data, target_origin)

    def focus(self) -> None:
        logger.debug("[{}] focus requested by {}", self._target.name, self._holder.name)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, WindowProxy)
            and other._target is self._target
            and other._holder is self._holder
        )

    def __hash__(self) -> int:
        return hash((id(self._target), id(self._holder)))


class WindowHost:
    """Registry of named contexts plus the delivery rules between them."""

    def __init__(self, *, allow_popups: bool = False):
        self.allow_popups = allow_popups
        self.trace: list[TraceEntry] = []
        self._contexts: dict[str, LocalContext] = {}
        self._pages: dict[str, _Page] = {}
        self._activation_depth = 0
        self._names = itertools.count(1)

    def register_page(self, origin: str, loader: PageLoader, *, delay: float = 0.0) -> None:
        """Run ``loader(context)`` whenever a context loads a page of ``origin``.

        ``delay`` (seconds) postpones the loader, like page scripts that
        register their listeners after the window is already open.
        """
        self._pages[origin_of(origin)] = _Page(loader=loader, delay=delay)

    def create_context(self, url: str, name: str | None = None) -> LocalContext:
        """Create a top-level context (a tab the user opened)."""
        name = name or f"tab-{next(self._names)}"
        existing = self._contexts.get(name)
        if existing is not None and not existing.closed:
            raise ValueError(f"context already exists: {name}")
        context = LocalContext(self, name=name, url=url)
        self._contexts[name] = context
        self._load(context)
        return context

    def get(self, name: str) -> LocalContext | None:
        context = self._contexts.get(name)
        if context is None or context.closed:
            return None
        return context

    @property
    def has_user_activation(self) -> bool:
        return self.allow_popups or self._activation_depth > 0

    @contextmanager
    def user_activation(self) -> Iterator[None]:
        """Scope during which opening new contexts is allowed (a click handler)."""
        self._activation_depth += 1
        try:
            yield
        finally:
            self._activation_depth -= 1

    def sent(self, msg_type: str | None = None, *, target: str | None = None) -> list[Any]:
        """Payloads recorded in the trace, optionally filtered by type and target."""
        rows = []
        for entry in self.trace:
            if target is not None and entry.target != target:
                continue
            data = entry.data
            if msg_type is not None and not (isinstance(data, dict) and data.get("type") == msg_type):
                continue
            rows.append(data)
        return rows

    async def settle(self, rounds: int = 20) -> None:
        """Let queued deliveries and listener tasks run to completion."""
        for _ in range(rounds):
            await asyncio.sleep(0)
            for context in list(self._contexts.values()):
                await context.drain()

    def _open_from(self, opener: LocalContext, url: str, name: str) -> ContextHandle | None:
        existing = self.get(name)
        if existing is not None:
            if url and url != existing.url:
                existing.navigate(url)
            return WindowProxy(existing, holder=opener)
        if not url:
            return None
        if not self.has_user_activation:
            logger.info("[{}] popup blocked: open({!r}) outside a user activation", opener.name, name)
            return None
        context = LocalContext(self, name=name, url=url, opener=opener)
        self._contexts[name] = context
        logger.debug("[{}] opened {} at {}", opener.name, name, context.origin)
        self._load(context)
        return WindowProxy(context, holder=opener)

    def _forget(self, context: LocalContext) -> None:
        if self._contexts.get(context.name) is context:
            del self._contexts[context.name]

    def _load(self, context: LocalContext) -> None:
        page = self._pages.get(context.origin)
        if page is None:
            return
        if page.delay <= 0:
            page.loader(context)
            return

        def _run() -> None:
            if not context.closed:
                page.loader(context)

        asyncio.get_running_loop().call_later(page.delay, _run)

    def _deliver(self, sender: LocalContext, target: LocalContext, data: Any, target_origin: str) -> None:
        payload = structured_clone(data)
        if target.closed:
            return
        if not origin_matches(target_origin, target.origin):
            logger.debug(
                "[{}] post to {} dropped: target origin {} != {}",
                sender.name,
                target.name,
                target_origin,
                target.origin,
            )
            return
        self.trace.append(TraceEntry(sender=sender.name, target=target.name, data=payload))
        event = MessageEvent(origin=sender.origin, data=payload, source=WindowProxy(sender, holder=target))
        asyncio.get_running_loop().call_soon(self._dispatch, target, event)

    @staticmethod
    def _dispatch(target: LocalContext, event: MessageEvent) -> None:
        if target.closed:
            return
        target.dispatch_event(event)
