"""Listener for the privileged context: handshake, validation, execution, reply."""

from __future__ import annotations

import inspect
from enum import Enum
from typing import Any, Callable

from loguru import logger

from lcapbridge.config.access import get_config
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.errors import (
    BridgeError,
    DataCloneError,
    HandshakeRequiredError,
    MissingNameError,
    NameNotAllowedError,
    NonceMismatchError,
    ProtocolViolationError,
    RemoteExecutionError,
    classify_exception,
    describe_exception,
    sanitize_error_message,
)
from lcapbridge.host.context import BrowsingContext, ContextHandle, MessageEvent
from lcapbridge.protocol import Call, CallbackInvoke, Hello, Ready, Result
from lcapbridge.serialization import decode_envelope, encode_envelope, is_callback_token, sanitize_value
from lcapbridge.server.registry import AllowList, FunctionTable


class ListenerState(Enum):
    UNARMED = "unarmed"
    ARMED = "armed"


class RpcListener:
    """Executes allow-listed functions on behalf of the trusted origin.

    Unarmed until the first HELLO; each later HELLO replaces the active
    nonce. CALLs are answered with a RESULT in every case once they pass the
    origin check.
    """

    def __init__(self, functions: FunctionTable, *, trusted_origin: str, allow_list: AllowList):
        self.functions = functions
        self.trusted_origin = trusted_origin
        self.allow_list = allow_list
        self.state = ListenerState.UNARMED
        self.active_nonce: str | None = None
        self.context: BrowsingContext | None = None

    @classmethod
    def from_config(cls, functions: FunctionTable, config: BridgeConfig | None = None) -> "RpcListener":
        if config is None:
            config = get_config()
        return cls(
            functions,
            trusted_origin=config.server.trusted_origin,
            allow_list=AllowList.of(config.server.allowed_roots),
        )

    def install(self, context: BrowsingContext) -> None:
        if self.context is not None:
            raise RuntimeError("listener is already installed")
        self.functions.freeze()
        self.context = context
        context.add_event_listener(self.handle_message)
        logger.info("[{}] RPC ready roots={}", context.name, list(self.allow_list.roots))

    def uninstall(self) -> None:
        if self.context is None:
            return
        self.context.remove_event_listener(self.handle_message)
        self.context = None

    async def handle_message(self, event: MessageEvent) -> None:
        if event.origin != self.trusted_origin:
            return
        try:
            envelope = decode_envelope(event.data)
        except ProtocolViolationError as exc:
            logger.debug("dropped message from {}: {}", event.origin, exc.message)
            return
        if isinstance(envelope, Hello):
            self._arm(envelope.nonce, event.source)
        elif isinstance(envelope, Call):
            await self._answer(envelope, event.source)

    def _arm(self, nonce: str, source: ContextHandle | None) -> None:
        if self.active_nonce is not None and self.active_nonce != nonce:
            logger.info("active nonce replaced by a new HELLO; earlier client is no longer served")
        self.active_nonce = nonce
        self.state = ListenerState.ARMED
        if source is not None:
            source.post_message(encode_envelope(Ready(nonce=nonce)), self.trusted_origin)

    async def _answer(self, call: Call, source: ContextHandle | None) -> None:
        try:
            value = await self._execute(call, source)
        except BridgeError as exc:
            logger.warning("RPC {} rejected with {}: {}", call.name, exc.code, exc.message)
            self._reply_error(source, call, exc)
            return
        except Exception as exc:
            code, _ = classify_exception(exc)
            message = sanitize_error_message(describe_exception(exc))
            logger.opt(exception=exc).warning("RPC {} failed with [{}]: {}", call.name, code, message)
            name = call.name if isinstance(call.name, str) else None
            self._reply_error(source, call, RemoteExecutionError(message, name=name))
            return
        try:
            self._reply(source, Result(id=call.id, ok=True, result=value, nonce=call.nonce))
        except DataCloneError as exc:
            logger.warning("RPC {} result could not be sent: {}", call.name, exc.message)
            self._reply_error(source, call, exc)

    async def _execute(self, call: Call, source: ContextHandle | None) -> Any:
        if self.state is not ListenerState.ARMED or self.active_nonce is None:
            raise HandshakeRequiredError()
        if call.nonce != self.active_nonce:
            raise NonceMismatchError()
        name = call.name
        if not isinstance(name, str) or not name.strip():
            raise MissingNameError()
        if not self.allow_list.allows(name):
            raise NameNotAllowedError(name, self.allow_list.roots)
        fn = self.functions.resolve(name)
        raw_args = [] if call.args is None else call.args
        if not isinstance(raw_args, list):
            raise ProtocolViolationError("RPC args must be a list")
        args = [self._materialize(arg, call, source) for arg in raw_args]
        outcome = fn(*args)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def _materialize(self, arg: Any, call: Call, source: ContextHandle | None) -> Any:
        if is_callback_token(arg):
            return self._callback_proxy(arg["callback"], call, source)
        return arg

    def _callback_proxy(self, callback_id: int, call: Call, source: ContextHandle | None) -> Callable[..., None]:
        def _invoke(*cb_args: Any) -> None:
            if source is None or source.closed:
                logger.debug("callback {} of call {} dropped: caller is gone", callback_id, call.id)
                return
            envelope = CallbackInvoke(
                id=call.id,
                callback=callback_id,
                args=[sanitize_value(a) for a in cb_args],
                nonce=call.nonce,
            )
            try:
                source.post_message(encode_envelope(envelope), self.trusted_origin)
            except DataCloneError as exc:
                logger.warning("callback {} of call {} not sent: {}", callback_id, call.id, exc.message)

        return _invoke

    def _reply(self, source: ContextHandle | None, result: Result) -> None:
        if source is None:
            logger.debug("no source to answer call {}", result.id)
            return
        source.post_message(encode_envelope(result), self.trusted_origin)

    def _reply_error(self, source: ContextHandle | None, call: Call, exc: BridgeError) -> None:
        call_id = call.id if isinstance(call.id, (int, str)) else None
        self._reply(
            source,
            Result(id=call_id, ok=False, error=exc.message, code=exc.code, nonce=call.nonce),
        )
