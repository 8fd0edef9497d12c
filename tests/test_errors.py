import asyncio
import builtins

import pytest

from lcapbridge.errors import (
    BridgeError,
    ErrorCategory,
    NameNotAllowedError,
    NonceMismatchError,
    NotAFunctionError,
    PopupBlockedError,
    RemoteExecutionError,
    TimeoutError,
    classify_exception,
    describe_exception,
    error_from_result,
    sanitize_error_message,
)


def test_bridge_error_to_dict_and_str():
    err = BridgeError("boom", code="X", category=ErrorCategory.RECOVERABLE, details={"a": 1})
    assert str(err) == "boom"
    assert err.to_dict() == {"error": "X", "message": "boom", "category": "recoverable", "details": {"a": 1}}


def test_popup_blocked_message_asks_for_a_click():
    err = PopupBlockedError("lcap-dev-bridge")
    assert err.code == "POPUP_BLOCKED"
    assert "user click" in err.message
    assert err.details == {"window_name": "lcap-dev-bridge"}


def test_timeout_error_details():
    err = TimeoutError("late", operation="_RB.x", timeout_seconds=1.5)
    assert err.category is ErrorCategory.TIMEOUT
    assert err.details == {"operation": "_RB.x", "timeout_seconds": 1.5}
    assert isinstance(err, BridgeError)


def test_timeout_error_is_caught_as_builtin_timeout():
    err = TimeoutError("late", operation="_RB.x")
    assert isinstance(err, builtins.TimeoutError)
    assert str(err) == "late"
    assert err.args == ("late",)
    with pytest.raises(asyncio.TimeoutError):
        raise err


def test_error_from_result_rebuilds_known_codes():
    err = error_from_result("NAME_NOT_ALLOWED", "RPC name must start with/equal one of: _RB", name="evil.fn")
    assert isinstance(err, NameNotAllowedError)
    assert err.message == "RPC name must start with/equal one of: _RB"
    assert err.details == {"name": "evil.fn"}

    assert isinstance(error_from_result("NONCE_MISMATCH", "stale"), NonceMismatchError)
    nf = error_from_result("NOT_A_FUNCTION", "Not a function: _RB.value", name="_RB.value")
    assert isinstance(nf, NotAFunctionError)
    assert nf.message == "Not a function: _RB.value"


def test_error_from_result_unknown_code_is_remote_execution_error():
    err = error_from_result(None, "division by zero", name="_RB.div")
    assert isinstance(err, RemoteExecutionError)
    assert err.message == "division by zero"
    assert err.details == {"name": "_RB.div"}
    assert error_from_result("WHATEVER", None).message == "remote call failed"


def test_sanitize_error_message_redacts_secrets():
    text = sanitize_error_message("login failed password=hunter2 with Bearer abc.def")
    assert "hunter2" not in text
    assert "abc.def" not in text
    assert "[REDACTED]" in text
    assert sanitize_error_message("plain failure") == "plain failure"


def test_describe_exception_falls_back_to_class_name():
    assert describe_exception(ValueError("bad")) == "bad"
    assert describe_exception(KeyError()) == "KeyError"


def test_classify_exception():
    assert classify_exception(NotAFunctionError("x")) == ("NOT_A_FUNCTION", ErrorCategory.NOT_FOUND)
    assert classify_exception(asyncio.TimeoutError()) == ("TIMEOUT", ErrorCategory.TIMEOUT)
    assert classify_exception(ConnectionResetError()) == ("CONNECTION_ERROR", ErrorCategory.CONNECTION)
    assert classify_exception(ValueError("x")) == ("INVALID_VALUE", ErrorCategory.VALIDATION)
    assert classify_exception(RuntimeError("x")) == ("REMOTE_EXECUTION_ERROR", ErrorCategory.FATAL)
