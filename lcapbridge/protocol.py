"""Wire protocol models shared by the client bridge and the server listener."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

HELLO = "LCAP_HELLO"
READY = "LCAP_READY"
CALL = "LCAP_RPC"
CALL_ALIAS = "LCAP_RPC_CALL"
RESULT = "LCAP_RPC_RESULT"
CALLBACK_INVOKE = "LCAP_RPC_CB"

CALL_TYPES = frozenset({CALL, CALL_ALIAS})

DEFAULT_ROOT = "_RB"


@dataclass(slots=True)
class Hello:
    """Client to server: announce the session nonce."""

    nonce: str


@dataclass(slots=True)
class Ready:
    """Server to client: handshake acknowledged for ``nonce``."""

    nonce: str | None = None


@dataclass(slots=True)
class Call:
    """Client to server: invoke ``name`` with ``args``.

    ``name`` and ``args`` are kept as received so the listener can answer
    malformed calls instead of dropping them.
    """

    id: Any
    name: Any
    root: str | None = None
    args: Any = field(default_factory=list)
    nonce: str | None = None


@dataclass(slots=True)
class Result:
    """Server to client: outcome of call ``id`` (None when unknown)."""

    id: Any
    ok: bool
    result: Any = None
    error: str | None = None
    code: str | None = None
    nonce: str | None = None


@dataclass(slots=True)
class CallbackInvoke:
    """Server to client: run the registered callback ``callback`` of call ``id``."""

    id: Any
    callback: int
    args: list[Any] = field(default_factory=list)
    nonce: str | None = None


Envelope = Union[Hello, Ready, Call, Result, CallbackInvoke]
