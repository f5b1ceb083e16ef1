"""Broadcast server — Socket.IO fan-out to every connected dashboard.

Learn: Each browser tab holds one Socket.IO connection. The server:
1. Greets a new connection with a `socket:connected` envelope (only to it)
2. Tells everyone else when a connection goes away (`socket:disconnected`)
3. Emits worker events to all live connections — no rooms, no filtering

Per-connection state machine:

    connecting → connected → disconnected
                     └─────→ error

`disconnected` is terminal; its broadcast happens exactly once even if
the transport reports the disconnect twice.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import socketio
import structlog

from folio.events.types import REALTIME_EVENT, SOCKET_CONNECTED, SOCKET_DISCONNECTED

logger = structlog.get_logger()


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class ClientConnection:
    sid: str
    state: ConnectionState = ConnectionState.CONNECTING
    connected_at: int = field(default_factory=lambda: int(time.time() * 1000))


class BroadcastServer:
    """Owns the Socket.IO server and the table of live connections."""

    def __init__(self, sio: socketio.AsyncServer, path: str = "/api/socket/io"):
        self.sio = sio
        self.path = path
        self._connections: dict[str, ClientConnection] = {}
        self._asgi_app = None
        sio.on("connect", self.on_connect)
        sio.on("disconnect", self.on_disconnect)

    @classmethod
    def create(cls, path: str, cors_origin: str = "*") -> "BroadcastServer":
        sio = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=cors_origin,
        )
        return cls(sio, path=path)

    @property
    def asgi_app(self) -> socketio.ASGIApp:
        """Engine.IO endpoint (websocket with long-polling fallback)."""
        if self._asgi_app is None:
            self._asgi_app = socketio.ASGIApp(self.sio, socketio_path=self.path.strip("/"))
        return self._asgi_app

    @property
    def connections(self) -> dict[str, ClientConnection]:
        return dict(self._connections)

    def live_connection_ids(self) -> list[str]:
        return [
            sid for sid, conn in self._connections.items()
            if conn.state == ConnectionState.CONNECTED
        ]

    # ── Socket.IO handlers ──────────────────────────────────

    async def on_connect(self, sid: str, environ: dict, auth: Any = None) -> None:
        conn = ClientConnection(sid=sid)
        self._connections[sid] = conn
        try:
            await self.sio.emit(
                REALTIME_EVENT,
                {"event": SOCKET_CONNECTED, "socketId": sid, "timestamp": _now_ms()},
                to=sid,
            )
        except Exception:
            conn.state = ConnectionState.ERROR
            logger.exception("realtime_server.connect_failed", sid=sid)
            return
        conn.state = ConnectionState.CONNECTED
        logger.info("realtime_server.client_connected", sid=sid, clients=len(self._connections))

    async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
        conn = self._connections.pop(sid, None)
        if conn is None or conn.state == ConnectionState.DISCONNECTED:
            return
        conn.state = ConnectionState.DISCONNECTED
        reason_text = str(reason) if reason is not None else "unknown"
        logger.info("realtime_server.client_disconnected", sid=sid, reason=reason_text)
        await self.sio.emit(
            REALTIME_EVENT,
            {
                "event": SOCKET_DISCONNECTED,
                "socketId": sid,
                "reason": reason_text,
                "timestamp": _now_ms(),
            },
            skip_sid=sid,
        )

    # ── Fan-out ─────────────────────────────────────────────

    async def emit(self, event: str, payload: Any) -> None:
        """Send an event to every live connection."""
        await self.sio.emit(event, payload)


def _now_ms() -> int:
    return int(time.time() * 1000)
