"""Browsing-context hosts: in-process and websocket relay."""

from lcapbridge.host.context import (
    BrowsingContext,
    ContextHandle,
    MessageEvent,
    origin_matches,
    origin_of,
)
from lcapbridge.host.memory import LocalContext, WindowHost, WindowProxy
from lcapbridge.host.storage import FileSessionStorage, MemoryStorage

__all__ = [
    "BrowsingContext",
    "ContextHandle",
    "FileSessionStorage",
    "LocalContext",
    "MemoryStorage",
    "MessageEvent",
    "WindowHost",
    "WindowProxy",
    "origin_matches",
    "origin_of",
]
