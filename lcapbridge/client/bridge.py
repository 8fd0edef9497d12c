"""Client half of the bridge: opens/attaches the platform context and issues correlated calls."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

from loguru import logger

from lcapbridge.client.readiness import ReadinessWaiter
from lcapbridge.client.session import (
    BRIDGE_SLOT,
    LISTENER_SLOT,
    BridgeSession,
    PendingCall,
    initialize,
)
from lcapbridge.config.access import get_config
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.errors import (
    NotConnectedError,
    PopupBlockedError,
    ProtocolViolationError,
    TimeoutError,
    error_from_result,
)
from lcapbridge.host.context import BrowsingContext, ContextHandle, MessageEvent
from lcapbridge.protocol import DEFAULT_ROOT, Call, CallbackInvoke, Hello, Ready, Result
from lcapbridge.serialization import callback_token, decode_envelope, encode_envelope, root_of


class PopupClient:
    """Bridge client bound to one tab.

    Several clients may be created for the same tab (for example after a code
    reload); they all share the tab's single BridgeSession and inbound
    listener.
    """

    def __init__(
        self,
        context: BrowsingContext,
        platform_url: str,
        *,
        target_origin: str,
        window_name: str = "lcap-dev-bridge",
        timeout_mins: float = 60.0,
        default_root: str = DEFAULT_ROOT,
        hello_interval_ms: int = 400,
        hello_burst_ms: int = 5000,
        max_callbacks: int = 1024,
        callback_ttl_seconds: float | None = None,
    ):
        if not target_origin:
            raise ValueError("target_origin must be the exact platform origin")
        self.context = context
        self.platform_url = platform_url
        self.timeout_mins = timeout_mins
        self.default_root = default_root
        self.hello_interval_ms = hello_interval_ms
        self.hello_burst_ms = hello_burst_ms
        self.session = initialize(
            context,
            target_origin=target_origin,
            window_name=window_name,
            max_callbacks=max_callbacks,
            callback_ttl_seconds=callback_ttl_seconds,
        )
        install_dispatcher(context)

    @classmethod
    def from_config(cls, context: BrowsingContext, config: BridgeConfig | None = None) -> "PopupClient":
        """Build a client from ``config`` (the process-wide config when omitted).

        An empty ``targetOrigin`` is derived from ``platformUrl``; ValueError
        when neither is set.
        """
        if config is None:
            config = get_config()
        client_cfg = config.client
        return cls(
            context,
            client_cfg.platform_url,
            target_origin=client_cfg.resolve_target_origin(),
            window_name=client_cfg.window_name,
            timeout_mins=client_cfg.timeout_mins,
            default_root=client_cfg.default_root,
            hello_interval_ms=client_cfg.hello_interval_ms,
            hello_burst_ms=client_cfg.hello_burst_ms,
            max_callbacks=config.callbacks.max_entries,
            callback_ttl_seconds=config.callbacks.ttl_seconds,
        )

    @property
    def readiness(self) -> ReadinessWaiter:
        return ReadinessWaiter.for_context(self.context)

    async def wait_for_ready(self, timeout_ms: int = 15000, expected_origin: str | None = None) -> dict[str, Any]:
        return await self.readiness.wait_for_ready(timeout_ms, expected_origin)

    def connect_from_click(self) -> None:
        """Open (or focus) the platform context and start the hello burst.

        Must run synchronously inside a user activation, otherwise the host
        refuses the popup and PopupBlockedError is raised.
        """
        session = self.session
        handle = self.context.open(self.platform_url, session.window_name)
        if handle is None:
            raise PopupBlockedError(session.window_name)
        handle.focus()
        session.server = handle
        session.ready = False
        self._start_hello_burst(handle)

    def attach_to_existing(self) -> bool:
        """Reattach to an already-open platform context; no popup, no gesture."""
        session = self.session
        handle = self.context.find(session.window_name)
        if handle is None or handle.closed:
            return False
        session.server = handle
        session.ready = False
        self._post_hello(handle)
        logger.debug("[{}] reattached to {}", self.context.name, session.window_name)
        return True

    def is_connected(self) -> bool:
        server = self.session.server
        return server is not None and not server.closed and self.session.ready

    async def call(self, name: str, *args: Any) -> Any:
        """Invoke ``name`` in the platform context and return its result.

        Function-valued arguments are registered as callbacks and sent as
        ``{"callback": id}`` tokens.
        """
        session = self.session
        server = session.server
        if server is None or server.closed:
            raise NotConnectedError()

        loop = asyncio.get_running_loop()
        call_id = session.next_call_id()
        future: asyncio.Future[Any] = loop.create_future()
        timer = loop.call_later(self.timeout_mins * 60.0, self._expire, call_id)
        session.pending[call_id] = PendingCall(
            id=call_id,
            name=name,
            future=future,
            timer=timer,
            started_at=loop.time(),
        )
        envelope = Call(
            id=call_id,
            root=root_of(name, self.default_root) if isinstance(name, str) else self.default_root,
            name=name,
            args=self._encode_args(args, call_id),
            nonce=session.nonce,
        )
        try:
            server.post_message(encode_envelope(envelope), session.target_origin)
        except Exception:
            self._discard(call_id)
            session.callbacks.release_call(call_id)
            raise
        logger.debug("[{}] call #{} {}", self.context.name, call_id, name)
        try:
            return await future
        finally:
            # Only still present when the awaiting task was cancelled locally.
            self._discard(call_id)

    def _encode_args(self, args: tuple[Any, ...], call_id: int) -> list[Any]:
        encoded: list[Any] = []
        for arg in args:
            if callable(arg):
                cb_id = self.session.callbacks.register(arg, call_id=call_id)
                encoded.append(callback_token(cb_id))
            else:
                encoded.append(arg)
        return encoded

    def _expire(self, call_id: int) -> None:
        entry = self.session.pending.pop(call_id, None)
        if entry is None or entry.future.done():
            return
        elapsed = asyncio.get_running_loop().time() - entry.started_at
        logger.warning("[{}] call #{} {} timed out after {:.1f}s", self.context.name, call_id, entry.name, elapsed)
        entry.future.set_exception(
            TimeoutError(
                f"RPC timeout for '{entry.name}' after {self.timeout_mins:g} mins",
                operation=entry.name,
                timeout_seconds=elapsed,
            )
        )

    def _discard(self, call_id: int) -> None:
        entry = self.session.pending.pop(call_id, None)
        if entry is not None:
            entry.timer.cancel()

    def _post_hello(self, handle: ContextHandle) -> None:
        handle.post_message(encode_envelope(Hello(nonce=self.session.nonce)), self.session.target_origin)

    def _start_hello_burst(self, handle: ContextHandle) -> None:
        session = self.session
        if session.hello_task is not None and not session.hello_task.done():
            session.hello_task.cancel()
        session.hello_task = None
        self._post_hello(handle)
        if self.hello_burst_ms > 0:
            session.hello_task = asyncio.get_running_loop().create_task(self._hello_burst(handle))

    async def _hello_burst(self, handle: ContextHandle) -> None:
        # The popup's listener may register after the first HELLO lands.
        loop = asyncio.get_running_loop()
        started = loop.time()
        interval = self.hello_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            if handle.closed:
                return
            self._post_hello(handle)
            if (loop.time() - started) * 1000.0 >= self.hello_burst_ms:
                return


def create_popup_client(
    context: BrowsingContext,
    platform_url: str,
    *,
    target_origin: str,
    auto_attach: bool = True,
    **options: Any,
) -> PopupClient:
    """Build a client for ``context``; with ``auto_attach`` try to rebind to an open popup."""
    client = PopupClient(context, platform_url, target_origin=target_origin, **options)
    if auto_attach:
        client.attach_to_existing()
    return client


def install_dispatcher(context: BrowsingContext) -> None:
    """Install the tab's inbound listener unless one is already there."""
    if context.namespace.get(LISTENER_SLOT):
        return

    def _listener(event: MessageEvent) -> None:
        dispatch_inbound(context, event)

    context.namespace[LISTENER_SLOT] = _listener
    context.add_event_listener(_listener)


def dispatch_inbound(context: BrowsingContext, event: MessageEvent) -> None:
    """Route one inbound message to the tab's session."""
    session = context.namespace.get(BRIDGE_SLOT)
    if not isinstance(session, BridgeSession):
        return
    if event.origin != session.target_origin:
        return
    try:
        envelope = decode_envelope(event.data)
    except ProtocolViolationError as exc:
        logger.debug("[{}] dropped message from {}: {}", context.name, event.origin, exc.message)
        return
    nonce = getattr(envelope, "nonce", None)
    if nonce and nonce != session.nonce:
        return

    if isinstance(envelope, Ready):
        session.ready = True
        logger.debug("[{}] bridge ready", context.name)
        return
    if isinstance(envelope, CallbackInvoke):
        if envelope.nonce == session.nonce:
            _run_callback(context, session, envelope)
        return
    if isinstance(envelope, Result):
        _settle(context, session, envelope)


def _settle(context: BrowsingContext, session: BridgeSession, result: Result) -> None:
    if not isinstance(result.id, int) or isinstance(result.id, bool):
        return
    entry = session.pending.pop(result.id, None)
    if entry is None:
        logger.debug("[{}] result for unknown call #{} ignored", context.name, result.id)
        return
    entry.timer.cancel()
    if entry.future.done():
        return
    if result.ok:
        entry.future.set_result(result.result)
    else:
        entry.future.set_exception(error_from_result(result.code, result.error, name=entry.name))


def _run_callback(context: BrowsingContext, session: BridgeSession, invoke: CallbackInvoke) -> None:
    fn = session.callbacks.get(invoke.callback)
    if fn is None:
        logger.debug("[{}] callback {} is not registered", context.name, invoke.callback)
        return
    try:
        outcome = fn(*invoke.args)
    except Exception:
        logger.opt(exception=True).warning("[{}] callback {} raised", context.name, invoke.callback)
        return
    if inspect.isawaitable(outcome):
        task = asyncio.ensure_future(outcome)
        session.background.add(task)
        task.add_done_callback(lambda t: _callback_done(context, session, invoke.callback, t))


def _callback_done(context: BrowsingContext, session: BridgeSession, callback_id: int, task: asyncio.Future[Any]) -> None:
    session.background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).warning("[{}] callback {} raised", context.name, callback_id)
