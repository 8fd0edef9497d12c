"""Server half of the bridge (runs in the privileged platform context)."""

from lcapbridge.server.listener import ListenerState, RpcListener
from lcapbridge.server.registry import AllowList, FunctionTable

__all__ = ["AllowList", "FunctionTable", "ListenerState", "RpcListener"]
