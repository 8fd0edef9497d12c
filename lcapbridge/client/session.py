"""Per-tab bridge session state: nonce, server handle, pending calls and callbacks."""

from __future__ import annotations

import asyncio
import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from lcapbridge.host.context import BrowsingContext, ContextHandle

BRIDGE_SLOT = "__lcap_bridge__"
LISTENER_SLOT = "__lcap_bridge_listener__"
NONCE_KEY = "rb_nonce"


def new_nonce() -> str:
    """Opaque per-tab token: four random 32-bit words joined by dashes."""
    return "-".join(str(secrets.randbits(32)) for _ in range(4))


@dataclass(slots=True)
class PendingCall:
    """An outstanding call waiting for its RESULT or its timer."""

    id: int
    name: str
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle
    started_at: float


@dataclass(slots=True)
class CallbackRegistration:
    callback_id: int
    fn: Callable[..., Any]
    call_id: int | None
    registered_at: float
    last_used_at: float


class CallbackRegistry:
    """Callback id to function, bounded and optionally expiring.

    Least recently used registrations are evicted once ``max_entries`` is
    exceeded; an invocation counts as a use. With ``ttl_seconds`` set,
    registrations idle for longer than that are dropped on access.
    """

    def __init__(
        self,
        *,
        max_entries: int = 1024,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seq = 0
        self._entries: OrderedDict[int, CallbackRegistration] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, callback_id: object) -> bool:
        return callback_id in self._entries

    def register(self, fn: Callable[..., Any], *, call_id: int | None = None) -> int:
        self._seq += 1
        now = self._clock()
        self._entries[self._seq] = CallbackRegistration(
            callback_id=self._seq,
            fn=fn,
            call_id=call_id,
            registered_at=now,
            last_used_at=now,
        )
        self._prune(now)
        return self._seq

    def get(self, callback_id: int) -> Callable[..., Any] | None:
        now = self._clock()
        self._prune(now)
        entry = self._entries.get(callback_id)
        if entry is None:
            return None
        entry.last_used_at = now
        self._entries.move_to_end(callback_id)
        return entry.fn

    def release_call(self, call_id: int) -> int:
        """Drop every registration made for ``call_id``; returns how many went."""
        doomed = [cb_id for cb_id, entry in self._entries.items() if entry.call_id == call_id]
        for cb_id in doomed:
            del self._entries[cb_id]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def _prune(self, now: float) -> None:
        if self.ttl_seconds is not None:
            expired = [
                cb_id
                for cb_id, entry in self._entries.items()
                if now - entry.last_used_at > self.ttl_seconds
            ]
            for cb_id in expired:
                del self._entries[cb_id]
        while len(self._entries) > self.max_entries:
            cb_id, _ = self._entries.popitem(last=False)
            logger.debug("callback {} evicted (registry full)", cb_id)


@dataclass
class BridgeSession:
    """One per tab. Lives at ``context.namespace[BRIDGE_SLOT]``."""

    nonce: str
    target_origin: str
    window_name: str
    callbacks: CallbackRegistry
    server: ContextHandle | None = None
    ready: bool = False
    call_seq: int = 0
    pending: dict[int, PendingCall] = field(default_factory=dict)
    hello_task: asyncio.Task[None] | None = None
    background: set[asyncio.Future[Any]] = field(default_factory=set)

    def next_call_id(self) -> int:
        self.call_seq += 1
        return self.call_seq


def initialize(
    context: BrowsingContext,
    *,
    target_origin: str,
    window_name: str,
    max_callbacks: int = 1024,
    callback_ttl_seconds: float | None = None,
) -> BridgeSession:
    """Create the tab's session, or reuse it and refresh its mutable config.

    The nonce is kept in session storage so a full reload of the tab keeps
    talking to the server under the same nonce.
    """
    session = context.namespace.get(BRIDGE_SLOT)
    if isinstance(session, BridgeSession):
        session.target_origin = target_origin
        session.window_name = window_name
        return session

    nonce = context.session_storage.get(NONCE_KEY) or new_nonce()
    session = BridgeSession(
        nonce=nonce,
        target_origin=target_origin,
        window_name=window_name,
        callbacks=CallbackRegistry(max_entries=max_callbacks, ttl_seconds=callback_ttl_seconds),
    )
    context.namespace[BRIDGE_SLOT] = session
    context.session_storage[NONCE_KEY] = nonce
    logger.debug("[{}] bridge session created for {}", context.name, target_origin)
    return session
