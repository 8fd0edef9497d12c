"""Tab-scoped markers that let a reloaded tab skip the connect click."""

from __future__ import annotations

from collections.abc import MutableMapping

from loguru import logger

READY_KEY = "lcap.ready"
ORIGIN_KEY = "lcap.origin"
PROCEEDED_KEY = "lcap.proceeded"


class SessionPersistence:
    """Reads and writes the ready/origin/proceeded markers in session storage.

    The proceeded marker depends on the ready marker: whenever the ready
    marker is invalidated, proceeded goes with it.
    """

    def __init__(self, storage: MutableMapping[str, str]):
        self.storage = storage

    @property
    def was_ready(self) -> bool:
        return self.storage.get(READY_KEY) == "1"

    @property
    def has_proceeded(self) -> bool:
        return self.storage.get(PROCEEDED_KEY) == "1"

    def remembered_origin(self, default: str) -> str:
        return self.storage.get(ORIGIN_KEY) or default

    def mark_connected(self, origin: str) -> None:
        self.storage[READY_KEY] = "1"
        self.storage[ORIGIN_KEY] = origin

    def mark_proceeded(self) -> None:
        """Only for explicit user action."""
        self.storage[PROCEEDED_KEY] = "1"

    def invalidate(self) -> None:
        for key in (READY_KEY, ORIGIN_KEY, PROCEEDED_KEY):
            self.storage.pop(key, None)
        logger.debug("session markers cleared")
