from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response

from blinkchat.core.hub import ChatHub
from blinkchat.core.proto import encode_frame
from blinkchat.server.config import ServerConfig

log = logging.getLogger("blinkchat.server.runtime")

_PROBE = object()


@dataclass(slots=True, eq=False)
class Connection:
    """Websocket wrapper that lets the hub send without awaiting.

    Frames and probes are queued and written in order by ``pump``.
    """

    websocket: ServerConnection
    on_pong: Callable[[], None] = lambda: None
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)

    def post(self, frame: Dict[str, Any]) -> None:
        self._enqueue(frame)

    def probe(self) -> None:
        self._enqueue(_PROBE)

    def _enqueue(self, item: Any) -> None:
        try:
            self.outbox.put_nowait(item)
        except asyncio.QueueFull:
            # peer stopped reading; the connection handler closes the session
            log.warning("Outbox full for %s, dropping connection", _fmt_remote(self.websocket))
            self.terminate()

    def terminate(self) -> None:
        transport = self.websocket.transport
        if transport is not None:
            transport.abort()

    async def pump(self) -> None:
        while True:
            item = await self.outbox.get()
            try:
                if item is _PROBE:
                    log.debug("Probe to %s", _fmt_remote(self.websocket))
                    pong_waiter = await self.websocket.ping()
                    pong_waiter.add_done_callback(self._pong_received)
                else:
                    await self.websocket.send(encode_frame(item))
            except websockets.ConnectionClosed:
                return
            except Exception as exc:
                # left for the liveness sweep to evict
                log.warning("Send to %s failed: %s", _fmt_remote(self.websocket), exc)

    def _pong_received(self, fut: asyncio.Future) -> None:
        if not fut.cancelled() and fut.exception() is None:
            self.on_pong()


class ServerRuntime:
    """Websocket front end for a ChatHub."""

    def __init__(self, config: ServerConfig, hub: Optional[ChatHub] = None) -> None:
        self.cfg = config
        self.hub = hub or ChatHub(
            max_message_length=config.max_message_length,
            sweep_interval_ms=config.heartbeat_interval_ms,
        )
        self._connections: Dict[str, Connection] = {}
        self._ws_server: Optional[Server] = None
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._ws_server = await serve(
            self._handle_connection,
            self.cfg.host,
            self.cfg.port,
            ping_interval=None,
            max_size=self.cfg.max_frame_bytes,
            process_request=self._process_request,
        )
        log.info("BlinkChat server listening on ws://%s:%d", self.cfg.host, self.bound_port)
        log.info(
            "Liveness sweep every %d ms, clients expected to beat every %d ms",
            self.cfg.heartbeat_interval_ms,
            self.cfg.client_heartbeat_ms,
        )

        self._tasks.append(asyncio.create_task(self.hub.liveness.run(self._sweep), name="liveness"))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for conn in list(self._connections.values()):
            try:
                await conn.websocket.close()
            except Exception:
                log.debug("Close failed for %s", _fmt_remote(conn.websocket), exc_info=True)

        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

    @property
    def bound_port(self) -> int:
        if self._ws_server is None:
            return self.cfg.port
        for sock in self._ws_server.sockets:
            return sock.getsockname()[1]
        return self.cfg.port

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        conn = Connection(websocket=websocket, outbox=asyncio.Queue(maxsize=self.cfg.max_outbox_frames))
        client_id = self.hub.connect(conn)
        conn.on_pong = lambda: self.hub.mark_alive(client_id)
        self._connections[client_id] = conn
        writer = asyncio.create_task(conn.pump(), name=f"writer-{client_id}")
        log.info("Client %s connected from %s", client_id, _fmt_remote(websocket))
        try:
            async for raw in websocket:
                self.hub.receive(client_id, raw)
        except websockets.ConnectionClosed:
            pass
        finally:
            self.hub.disconnect(client_id)
            self._connections.pop(client_id, None)
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

    def _process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if request.path == "/healthz":
            return connection.respond(HTTPStatus.OK, "ok\n")
        return None

    def _sweep(self) -> None:
        evicted = self.hub.sweep()
        for client_id in evicted:
            self._connections.pop(client_id, None)
        stats = self.hub.snapshot()
        log.info("Hub: %d client(s), %d pair(s), waiting=%s", stats.clients, stats.pairs, stats.waiting)


def _fmt_remote(websocket: ServerConnection) -> str:
    peer = websocket.remote_address
    if isinstance(peer, tuple):
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


__all__ = ["ServerRuntime", "Connection"]
