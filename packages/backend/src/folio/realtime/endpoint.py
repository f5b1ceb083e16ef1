"""Socket endpoint — the one URL path realtime clients talk to.

Learn: Everything under /api/socket/io goes through this ASGI middleware:
1. The request makes sure the broadcast server exists (registry.ensure()),
   so the server is born from the first client request, not at startup
2. Engine.IO traffic (?EIO=4&transport=...) is handed to Socket.IO, which
   negotiates a websocket and falls back to long-polling when it must
3. A plain GET is the client's warm-up call — answered with an empty 200

Other paths pass straight through to the FastAPI app.
"""

from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocketClose

from folio.realtime.registry import BroadcastRegistry


class RealtimeEndpointMiddleware:
    """Mount the lazily created Socket.IO server on a fixed path."""

    def __init__(self, app: ASGIApp, registry: BroadcastRegistry, path: str = "/api/socket/io"):
        self.app = app
        self.registry = registry
        self.path = "/" + path.strip("/")

    def _matches(self, path: str) -> bool:
        return path == self.path or path.startswith(self.path + "/")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket") or not self._matches(scope["path"]):
            await self.app(scope, receive, send)
            return

        server = await self.registry.ensure()

        if b"EIO=" in scope.get("query_string", b""):
            await server.asgi_app(scope, receive, send)
            return

        if scope["type"] == "websocket":
            await WebSocketClose(code=1008)(scope, receive, send)
            return

        await Response(status_code=200)(scope, receive, send)
