"""
Exception hierarchy and error handling utilities for lcapbridge.

Provides:
- Custom exception classes with error codes
- Error categorization (validation, permission, timeout, ...)
- Safe error message formatting (no sensitive data leak)
- Rebuilding typed errors from RESULT envelopes on the client side
"""

from __future__ import annotations

import asyncio
import builtins
import json
import re
from enum import Enum
from typing import Any, Callable


class ErrorCategory(Enum):
    """Error categories for classification."""
    RECOVERABLE = "recoverable"
    FATAL = "fatal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    CONNECTION = "connection"


class BridgeError(Exception):
    """Base exception for all lcapbridge errors."""

    def __init__(
        self,
        message: str,
        code: str = "BRIDGE_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return self.message


class PopupBlockedError(BridgeError):
    """The host refused to open the named context (needs a fresh user gesture)."""

    def __init__(self, window_name: str | None = None):
        super().__init__(
            "Popup blocked. Trigger from a user click.",
            code="POPUP_BLOCKED",
            category=ErrorCategory.RECOVERABLE,
            details={"window_name": window_name} if window_name else {},
        )


class NotConnectedError(BridgeError):
    """A call was issued with no live server context."""

    def __init__(self, message: str = "Not connected: click Connect or let auto-attach run."):
        super().__init__(message, code="NOT_CONNECTED", category=ErrorCategory.CONNECTION)


class TimeoutError(BridgeError, builtins.TimeoutError):
    """No RESULT (or no READY) arrived within the budget.

    Also a builtin TimeoutError, so ``except asyncio.TimeoutError`` catches it.
    """

    def __init__(self, message: str, operation: str | None = None, timeout_seconds: float | None = None):
        details: dict[str, Any] = {}
        if operation is not None:
            details["operation"] = operation
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, code="TIMEOUT", category=ErrorCategory.TIMEOUT, details=details)


class ProtocolViolationError(BridgeError):
    """Malformed or foreign envelope. Dropped by listeners, never surfaced to callers."""

    def __init__(self, message: str):
        super().__init__(message, code="PROTOCOL_VIOLATION", category=ErrorCategory.VALIDATION)


class HandshakeRequiredError(BridgeError):
    """A CALL arrived before any HELLO armed the listener."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message or "RPC handshake required: no active session",
            code="HANDSHAKE_REQUIRED",
            category=ErrorCategory.PERMISSION,
        )


class NonceMismatchError(BridgeError):
    """A CALL carried a nonce other than the listener's active one."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message or "RPC nonce does not match the active session",
            code="NONCE_MISMATCH",
            category=ErrorCategory.PERMISSION,
        )


class MissingNameError(BridgeError):
    """A CALL without a usable function name."""

    def __init__(self, message: str | None = None):
        super().__init__(message or 'RPC missing "name"', code="MISSING_NAME", category=ErrorCategory.VALIDATION)


class NameNotAllowedError(BridgeError):
    """A CALL naming something outside the allow-list."""

    def __init__(self, name: str, roots: tuple[str, ...] | list[str] = (), message: str | None = None):
        super().__init__(
            message or f"RPC name must start with/equal one of: {', '.join(roots)}",
            code="NAME_NOT_ALLOWED",
            category=ErrorCategory.PERMISSION,
            details={"name": name},
        )


class NotAFunctionError(BridgeError):
    """The allow-listed name does not resolve to a callable."""

    def __init__(self, name: str, message: str | None = None):
        super().__init__(
            message or f"Not a function: {name}",
            code="NOT_A_FUNCTION",
            category=ErrorCategory.NOT_FOUND,
            details={"name": name},
        )


class RemoteExecutionError(BridgeError):
    """The resolved function raised, or its awaitable failed."""

    def __init__(self, message: str, name: str | None = None):
        super().__init__(
            message,
            code="REMOTE_EXECUTION_ERROR",
            category=ErrorCategory.RECOVERABLE,
            details={"name": name} if name else {},
        )


class DataCloneError(BridgeError):
    """A value cannot cross the context boundary."""

    def __init__(self, message: str):
        super().__init__(message, code="DATA_CLONE_ERROR", category=ErrorCategory.VALIDATION)


class RelayError(BridgeError):
    """Relay transport failure."""

    def __init__(self, message: str):
        super().__init__(message, code="RELAY_ERROR", category=ErrorCategory.CONNECTION)


_REMOTE_ERRORS: dict[str, Callable[[str, str], BridgeError]] = {
    "HANDSHAKE_REQUIRED": lambda text, _name: HandshakeRequiredError(text),
    "NONCE_MISMATCH": lambda text, _name: NonceMismatchError(text),
    "MISSING_NAME": lambda text, _name: MissingNameError(text),
    "NAME_NOT_ALLOWED": lambda text, name: NameNotAllowedError(name, message=text),
    "NOT_A_FUNCTION": lambda text, name: NotAFunctionError(name, message=text),
    "DATA_CLONE_ERROR": lambda text, _name: DataCloneError(text),
}


def error_from_result(code: Any, message: Any, *, name: str = "") -> BridgeError:
    """Rebuild a typed error from the code/error pair of a failed RESULT.

    The remote message is kept verbatim; unknown or missing codes map to
    RemoteExecutionError.
    """
    text = str(message) if message is not None else "remote call failed"
    factory = _REMOTE_ERRORS.get(str(code or ""))
    if factory is None:
        return RemoteExecutionError(text, name=name or None)
    return factory(text, name)


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"[a-zA-Z0-9]{32,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove sensitive information from error messages."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def describe_exception(exc: BaseException) -> str:
    """Human-readable one-line message for an exception (no traceback)."""
    text = str(exc).strip()
    return text or exc.__class__.__name__


def classify_exception(exc: Exception) -> tuple[str, ErrorCategory]:
    """
    Classify an exception and return (error_code, category).

    Bridge errors keep their own code; everything else is mapped from its
    type, falling back to REMOTE_EXECUTION_ERROR.
    """
    if isinstance(exc, BridgeError):
        return exc.code, exc.category

    if isinstance(exc, asyncio.TimeoutError):
        return "TIMEOUT", ErrorCategory.TIMEOUT

    if isinstance(exc, ConnectionError):
        return "CONNECTION_ERROR", ErrorCategory.CONNECTION

    if isinstance(exc, json.JSONDecodeError):
        return "JSON_PARSE_ERROR", ErrorCategory.VALIDATION

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return "INVALID_VALUE", ErrorCategory.VALIDATION

    return "REMOTE_EXECUTION_ERROR", ErrorCategory.FATAL
