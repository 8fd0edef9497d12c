"""Serialization helpers for bridge envelopes and values crossing a context boundary."""

from __future__ import annotations

import json
from typing import Any

from .errors import DataCloneError, ProtocolViolationError
from .protocol import (
    CALL,
    CALL_TYPES,
    CALLBACK_INVOKE,
    DEFAULT_ROOT,
    HELLO,
    READY,
    RESULT,
    Call,
    CallbackInvoke,
    Envelope,
    Hello,
    Ready,
    Result,
)

FUNCTION_MARKER = {"__type": "function", "note": "omitted"}


def safe_dict(value: Any) -> dict[str, Any]:
    """Return the value when dict-like, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def root_of(name: str, default: str = DEFAULT_ROOT) -> str:
    """Leading dotted segment of ``name``, or ``default`` for a bare name."""
    if "." in name:
        return name.split(".", 1)[0]
    return default


def callback_token(callback_id: int) -> dict[str, int]:
    return {"callback": callback_id}


def is_callback_token(value: Any) -> bool:
    """True for ``{"callback": <int>}`` placeholders produced by the client."""
    if not isinstance(value, dict) or set(value) != {"callback"}:
        return False
    cb = value["callback"]
    return isinstance(cb, int) and not isinstance(cb, bool)


def structured_clone(value: Any) -> Any:
    """Copy ``value`` the way a context boundary would, via JSON.

    Raises DataCloneError for anything JSON cannot carry (functions, objects,
    circular structures, NaN).
    """
    try:
        return json.loads(json.dumps(value, allow_nan=False))
    except (TypeError, ValueError) as exc:
        raise DataCloneError(f"value could not be cloned: {exc}") from exc


def sanitize_value(value: Any) -> Any:
    """Replace function values with an inert marker, copying containers."""
    if callable(value):
        return dict(FUNCTION_MARKER)
    if isinstance(value, dict):
        return {k: sanitize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) for v in value]
    return value


def _nonce(row: dict[str, Any]) -> str | None:
    nonce = row.get("nonce")
    if nonce is None:
        return None
    if not isinstance(nonce, str):
        raise ProtocolViolationError("nonce must be a string")
    return nonce


def _callback_id(raw: Any) -> int:
    if not isinstance(raw, int) or isinstance(raw, bool):
        raise ProtocolViolationError("callback id must be an integer")
    return raw


def decode_envelope(data: Any) -> Envelope:
    """Decode a received message into an envelope.

    Raises ProtocolViolationError for anything that is not a bridge envelope.
    """
    row = safe_dict(data)
    msg_type = row.get("type")
    if msg_type == HELLO:
        nonce = _nonce(row)
        if not nonce:
            raise ProtocolViolationError("hello without nonce")
        return Hello(nonce=nonce)
    if msg_type == READY:
        return Ready(nonce=_nonce(row))
    if msg_type in CALL_TYPES:
        root = row.get("root")
        return Call(
            id=row.get("id"),
            name=row.get("name"),
            root=root if isinstance(root, str) else None,
            args=row.get("args", []),
            nonce=_nonce(row),
        )
    if msg_type == RESULT:
        error = row.get("error")
        code = row.get("code")
        return Result(
            id=row.get("id"),
            ok=bool(row.get("ok")),
            result=row.get("result"),
            error=str(error) if error is not None else None,
            code=str(code) if code is not None else None,
            nonce=_nonce(row),
        )
    if msg_type == CALLBACK_INVOKE:
        args = row.get("args")
        return CallbackInvoke(
            id=row.get("id"),
            callback=_callback_id(row.get("callback")),
            args=list(args) if isinstance(args, list) else [],
            nonce=_nonce(row),
        )
    raise ProtocolViolationError(f"unknown message type: {msg_type!r}")


def encode_envelope(envelope: Envelope) -> dict[str, Any]:
    """Encode an envelope into its wire dict."""
    if isinstance(envelope, Hello):
        return {"type": HELLO, "nonce": envelope.nonce}
    if isinstance(envelope, Ready):
        return {"type": READY, "nonce": envelope.nonce}
    if isinstance(envelope, Call):
        return {
            "type": CALL,
            "id": envelope.id,
            "root": envelope.root,
            "name": envelope.name,
            "args": envelope.args,
            "nonce": envelope.nonce,
        }
    if isinstance(envelope, Result):
        payload: dict[str, Any] = {"type": RESULT, "id": envelope.id, "ok": envelope.ok}
        if envelope.ok:
            payload["result"] = envelope.result
        else:
            payload["error"] = envelope.error
            if envelope.code:
                payload["code"] = envelope.code
        payload["nonce"] = envelope.nonce
        return payload
    if isinstance(envelope, CallbackInvoke):
        return {
            "type": CALLBACK_INVOKE,
            "id": envelope.id,
            "callback": envelope.callback,
            "args": envelope.args,
            "nonce": envelope.nonce,
        }
    raise TypeError(f"not an envelope: {envelope!r}")
