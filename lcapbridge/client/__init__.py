"""Client half of the bridge (runs in the app tab)."""

from lcapbridge.client.bridge import PopupClient, create_popup_client
from lcapbridge.client.connector import ConnectionFlow
from lcapbridge.client.persistence import SessionPersistence
from lcapbridge.client.readiness import ReadinessWaiter
from lcapbridge.client.requests import RequestRouter
from lcapbridge.client.session import BridgeSession, CallbackRegistry, initialize

__all__ = [
    "BridgeSession",
    "CallbackRegistry",
    "ConnectionFlow",
    "PopupClient",
    "ReadinessWaiter",
    "RequestRouter",
    "SessionPersistence",
    "create_popup_client",
    "initialize",
]
