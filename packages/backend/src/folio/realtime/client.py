"""Client bridge — keeps a live channel open and refreshes on every event.

Learn: Two layers, mirroring how a dashboard tab behaves:

- RealtimeChannel wraps one socketio.AsyncClient. It is shared: every
  bridge in the same process ("tab") for the same server reuses it via
  shared_channel(). Socket.IO handles reconnection after drops (1s delay,
  growing to a 5s ceiling), and open() asks for the same backoff on the
  very first connect. Listeners can be added and removed (on/off),
  which the raw AsyncClient does not offer.

- RealtimeBridge is what a view mounts. mount() fires a best-effort
  warm-up GET at the socket endpoint (so the server gets created), opens
  the shared channel, and subscribes `connect` + `realtime:event` to the
  view's refresh callback. unmount() cancels the warm-up and removes the
  listeners — the channel stays up for the next view.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Optional

import httpx
import socketio
import structlog
from socketio.exceptions import ConnectionError as SocketConnectionError

from folio.events.types import REALTIME_EVENT

logger = structlog.get_logger()

Listener = Callable[..., Any]

DEFAULT_PATH = "/api/socket/io"
TRANSPORTS = ["websocket", "polling"]


class RealtimeChannel:
    def __init__(
        self,
        base_url: str,
        path: str = DEFAULT_PATH,
        client: Optional[socketio.AsyncClient] = None,
        reconnection_delay: float = 1.0,
        reconnection_delay_max: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.reconnection_delay = reconnection_delay
        self.reconnection_delay_max = reconnection_delay_max
        self.client = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_delay=reconnection_delay,
            reconnection_delay_max=reconnection_delay_max,
        )
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._hooked: set[str] = set()
        self._connect_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return bool(self.client.connected)

    def on(self, event: str, listener: Listener) -> None:
        if event not in self._hooked:
            self._hooked.add(event)

            async def handler(*args: Any) -> None:
                await self.dispatch(event, *args)

            self.client.on(event, handler)
        if listener not in self._listeners[event]:
            self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    async def dispatch(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            result = listener(*args)
            if inspect.isawaitable(result):
                await result

    def open(self) -> Optional[asyncio.Task]:
        """Connect in the background unless already connected or connecting."""
        if self.connected:
            return None
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self._connect())
        return self._connect_task

    async def _connect(self) -> None:
        # retry=True runs the client's own reconnection backoff on the first attempt too.
        try:
            await self.client.connect(
                self.base_url,
                transports=TRANSPORTS,
                socketio_path=self.path.strip("/"),
                retry=True,
            )
        except SocketConnectionError as e:
            logger.warning("realtime_client.connect_failed", url=self.base_url, error=str(e))

    async def close(self) -> None:
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        self._connect_task = None
        if self.connected:
            await self.client.disconnect()


_channels: dict[tuple[str, str], RealtimeChannel] = {}


def shared_channel(base_url: str, path: str = DEFAULT_PATH) -> RealtimeChannel:
    """One channel per server per process, reused across bridges."""
    key = (base_url.rstrip("/"), path)
    if key not in _channels:
        _channels[key] = RealtimeChannel(base_url, path)
    return _channels[key]


class RealtimeBridge:
    """Refresh a view whenever the server reports a change."""

    def __init__(
        self,
        refresh: Callable[[], Any],
        base_url: str,
        path: str = DEFAULT_PATH,
        channel: Optional[RealtimeChannel] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self._refresh = refresh
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.channel = channel
        self._http = http
        self._warmup: Optional[asyncio.Task] = None
        self.mounted = False

    async def mount(self) -> RealtimeChannel:
        if self.mounted:
            return self.channel
        self._warmup = asyncio.create_task(self._warm_up())
        if self.channel is None:
            self.channel = shared_channel(self.base_url, self.path)
        self.channel.on("connect", self._handle)
        self.channel.on(REALTIME_EVENT, self._handle)
        self.channel.open()
        self.mounted = True
        return self.channel

    async def unmount(self) -> None:
        if self._warmup is not None and not self._warmup.done():
            self._warmup.cancel()
            try:
                await self._warmup
            except asyncio.CancelledError:
                pass
        self._warmup = None
        if self.channel is not None:
            self.channel.off("connect", self._handle)
            self.channel.off(REALTIME_EVENT, self._handle)
        self.mounted = False

    async def _warm_up(self) -> None:
        try:
            if self._http is not None:
                await self._http.get(self.base_url + self.path)
            else:
                async with httpx.AsyncClient(timeout=10.0) as http:
                    await http.get(self.base_url + self.path)
        except httpx.HTTPError as e:
            # The socket transport retries on its own.
            logger.debug("realtime_client.warmup_failed", error=str(e))

    async def _handle(self, *args: Any) -> None:
        result = self._refresh()
        if inspect.isawaitable(result):
            await result
