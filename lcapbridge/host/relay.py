"""Websocket relay: browsing contexts that live in separate processes.

A ``RelayHub`` accepts named endpoints and forwards ``post`` frames between
them, applying the receiver's registered origin to ``targetOrigin`` and
stamping the sender's registered origin on the delivered ``message``. A
``RelayContext`` is one endpoint; the other endpoints appear to it as
``ContextHandle``s.

Frames are JSON text with a ``type`` key::

    register{name, origin}        endpoint -> hub, first frame
    registered{name, peers}       hub -> endpoint, peers is {name: origin}
    opened{name, origin}          hub -> endpoints, a peer joined
    closed{name}                  hub -> endpoints, a peer left
    post{target, targetOrigin, data}
    message{source, origin, data}
    error{message}
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

from loguru import logger

from lcapbridge.errors import RelayError
from lcapbridge.host.context import (
    BrowsingContext,
    ContextHandle,
    MessageEvent,
    origin_matches,
    origin_of,
)
from lcapbridge.host.storage import MemoryStorage
from lcapbridge.serialization import safe_dict, structured_clone


def _dump(frame: dict[str, Any]) -> str:
    return json.dumps(frame, ensure_ascii=False)


def _load(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, str):
        return {}
    try:
        return safe_dict(json.loads(raw))
    except json.JSONDecodeError:
        return {}


@dataclass(slots=True)
class _Endpoint:
    name: str
    origin: str
    websocket: Any


class RelayHub:
    """Routes frames between registered endpoints."""

    def __init__(self) -> None:
        self._endpoints: dict[str, _Endpoint] = {}
        self._server: Any = None

    @property
    def port(self) -> int:
        if self._server is None:
            raise RelayError("relay hub is not running")
        sock = next(iter(self._server.sockets))
        return int(sock.getsockname()[1])

    def peers(self) -> dict[str, str]:
        return {name: ep.origin for name, ep in self._endpoints.items()}

    async def start(self, host: str = "127.0.0.1", port: int = 8765) -> "RelayHub":
        import websockets

        self._server = await websockets.serve(self._handle, host, port)
        logger.info("relay hub listening on ws://{}:{}", host, self.port)
        return self

    async def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        self._endpoints.clear()

    async def serve_forever(self, host: str = "127.0.0.1", port: int = 8765) -> None:
        await self.start(host, port)
        try:
            await asyncio.Future()
        finally:
            await self.close()

    async def __aenter__(self) -> "RelayHub":
        if self._server is None:
            await self.start(port=0)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _handle(self, websocket: Any, path: str | None = None) -> None:
        from websockets.exceptions import ConnectionClosed

        endpoint: _Endpoint | None = None
        try:
            async for raw in websocket:
                frame = _load(raw)
                kind = frame.get("type")
                if endpoint is None:
                    if kind != "register":
                        await self._send_error(websocket, "first frame must be register")
                        continue
                    endpoint = await self._register(websocket, frame)
                    continue
                if kind == "post":
                    await self._route(endpoint, frame)
                else:
                    await self._send_error(websocket, f"unsupported frame: {kind!r}")
        except ConnectionClosed:
            pass
        finally:
            if endpoint is not None and self._endpoints.get(endpoint.name) is endpoint:
                del self._endpoints[endpoint.name]
                logger.debug("relay endpoint {} left", endpoint.name)
                await self._broadcast({"type": "closed", "name": endpoint.name})

    async def _register(self, websocket: Any, frame: dict[str, Any]) -> _Endpoint | None:
        name = frame.get("name")
        origin = frame.get("origin")
        if not isinstance(name, str) or not name or not isinstance(origin, str):
            await self._send_error(websocket, "register needs a name and an origin")
            return None
        if name in self._endpoints:
            await self._send_error(websocket, f"name already registered: {name}")
            return None
        endpoint = _Endpoint(name=name, origin=origin_of(origin), websocket=websocket)
        await websocket.send(
            _dump({"type": "registered", "name": name, "peers": self.peers()})
        )
        await self._broadcast({"type": "opened", "name": name, "origin": endpoint.origin})
        self._endpoints[name] = endpoint
        logger.debug("relay endpoint {} joined from {}", name, endpoint.origin)
        return endpoint

    async def _route(self, sender: _Endpoint, frame: dict[str, Any]) -> None:
        target = self._endpoints.get(str(frame.get("target") or ""))
        if target is None:
            logger.debug("relay post from {} dropped: no endpoint {!r}", sender.name, frame.get("target"))
            return
        target_origin = frame.get("targetOrigin")
        if not isinstance(target_origin, str) or not origin_matches(target_origin, target.origin):
            logger.debug(
                "relay post {} -> {} dropped: target origin {} != {}",
                sender.name,
                target.name,
                target_origin,
                target.origin,
            )
            return
        await self._send(
            target,
            {"type": "message", "source": sender.name, "origin": sender.origin, "data": frame.get("data")},
        )

    async def _broadcast(self, frame: dict[str, Any]) -> None:
        for endpoint in list(self._endpoints.values()):
            await self._send(endpoint, frame)

    async def _send(self, endpoint: _Endpoint, frame: dict[str, Any]) -> None:
        from websockets.exceptions import ConnectionClosed

        try:
            await endpoint.websocket.send(_dump(frame))
        except ConnectionClosed:
            logger.debug("relay endpoint {} went away mid-send", endpoint.name)

    @staticmethod
    async def _send_error(websocket: Any, message: str) -> None:
        await websocket.send(_dump({"type": "error", "message": message}))


class RelayPeer(ContextHandle):
    """Another relay endpoint, as seen from ``context``."""

    def __init__(self, context: "RelayContext", name: str):
        self._context = context
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def origin(self) -> str | None:
        return self._context.peers.get(self._name)

    @property
    def closed(self) -> bool:
        return self._context.closed or self._name not in self._context.peers

    def post_message(self, data: Any, target_origin: str) -> None:
        payload = structured_clone(data)
        self._context._enqueue(
            {"type": "post", "target": self._name, "targetOrigin": target_origin, "data": payload}
        )

    def __eq__(self, other: object) -> bool:
        return isinstance(other, RelayPeer) and other._context is self._context and other._name == self._name

    def __hash__(self) -> int:
        return hash((id(self._context), self._name))


class RelayContext(BrowsingContext):
    """A browsing context whose peers are reached through a RelayHub.

    Relay endpoints cannot spawn each other, so ``open`` only finds a peer
    that is already registered under that name.
    """

    def __init__(self, url: str, *, name: str, origin: str, session_storage: Any = None):
        super().__init__(
            name=name,
            origin=origin_of(origin),
            session_storage=session_storage if session_storage is not None else MemoryStorage(),
        )
        self.url = url
        self.peers: dict[str, str] = {}
        self._ws: Any = None
        self._outbox: asyncio.Queue[dict[str, Any]] | None = None
        self._reader: asyncio.Task[None] | None = None
        self._writer: asyncio.Task[None] | None = None
        self._gone = asyncio.Event()
        self._gone.set()

    @property
    def closed(self) -> bool:
        return self._ws is None

    async def connect(self, timeout: float = 5.0) -> "RelayContext":
        import websockets

        try:
            ws = await asyncio.wait_for(websockets.connect(self.url), timeout=timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            raise RelayError(f"cannot reach relay at {self.url}: {exc}") from exc
        await ws.send(_dump({"type": "register", "name": self.name, "origin": self.origin}))
        try:
            reply = _load(await asyncio.wait_for(ws.recv(), timeout=timeout))
        except asyncio.TimeoutError as exc:
            await ws.close()
            raise RelayError("relay did not acknowledge registration") from exc
        if reply.get("type") != "registered":
            await ws.close()
            raise RelayError(str(reply.get("message") or "relay registration refused"))
        self.peers = {str(k): str(v) for k, v in safe_dict(reply.get("peers")).items()}
        self._ws = ws
        self._gone.clear()
        self._outbox = asyncio.Queue()
        self._reader = asyncio.create_task(self._read_loop(ws))
        self._writer = asyncio.create_task(self._write_loop(ws, self._outbox))
        logger.info("[{}] joined relay {} peers={}", self.name, self.url, sorted(self.peers))
        return self

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        self._gone.set()
        for task in (self._reader, self._writer):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._reader, self._writer):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reader = self._writer = None
        self.peers.clear()
        if ws is not None:
            await ws.close()

    async def wait_closed(self) -> None:
        """Return once this context has left the relay (closed or connection lost)."""
        await self._gone.wait()

    async def __aenter__(self) -> "RelayContext":
        if self._ws is None:
            await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def open(self, url: str, name: str) -> ContextHandle | None:
        handle = self.find(name)
        if handle is None:
            logger.info("[{}] no relay peer named {}; start it first", self.name, name)
        return handle

    def find(self, name: str) -> ContextHandle | None:
        if self.closed or name == self.name or name not in self.peers:
            return None
        return RelayPeer(self, name)

    def _enqueue(self, frame: dict[str, Any]) -> None:
        if self._outbox is None or self.closed:
            raise RelayError(f"[{self.name}] relay connection is not open")
        self._outbox.put_nowait(frame)

    async def _write_loop(self, ws: Any, outbox: asyncio.Queue[dict[str, Any]]) -> None:
        from websockets.exceptions import ConnectionClosed

        while True:
            frame = await outbox.get()
            try:
                await ws.send(_dump(frame))
            except ConnectionClosed:
                logger.warning("[{}] relay connection closed while sending", self.name)
                return

    async def _read_loop(self, ws: Any) -> None:
        from websockets.exceptions import ConnectionClosed

        try:
            async for raw in ws:
                self._on_frame(_load(raw))
        except ConnectionClosed:
            pass
        if self._ws is ws:
            logger.warning("[{}] relay connection lost", self.name)
            self._ws = None
            self._gone.set()
            self.peers.clear()

    def _on_frame(self, frame: dict[str, Any]) -> None:
        kind = frame.get("type")
        if kind == "message":
            source = str(frame.get("source") or "")
            event = MessageEvent(
                origin=str(frame.get("origin") or "null"),
                data=frame.get("data"),
                source=RelayPeer(self, source) if source else None,
            )
            self.dispatch_event(event)
        elif kind == "opened":
            self.peers[str(frame.get("name"))] = str(frame.get("origin"))
        elif kind == "closed":
            self.peers.pop(str(frame.get("name")), None)
        elif kind == "error":
            logger.warning("[{}] relay error: {}", self.name, frame.get("message"))
