"""Broadcast registry — the one live BroadcastServer of this process.

Learn: The server is not built at startup. The first request on the socket
endpoint calls ensure(), which builds it under a lock:

    uninitialized → initializing → ready

Later calls (and later set() calls) observe the existing server and reuse
it; a live server is never replaced. The worker only ever calls get(),
which returns None until a client has connected at least once.
"""

import asyncio
from enum import Enum
from typing import Callable, Optional

import structlog

from folio.realtime.server import BroadcastServer

logger = structlog.get_logger()


class RegistryState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class BroadcastRegistry:
    def __init__(self, factory: Callable[[], BroadcastServer]):
        self._factory = factory
        self._server: Optional[BroadcastServer] = None
        self._lock = asyncio.Lock()
        self.state = RegistryState.UNINITIALIZED

    def get(self) -> Optional[BroadcastServer]:
        return self._server

    def set(self, server: BroadcastServer) -> BroadcastServer:
        """Register `server` unless one is already live; returns the live one."""
        if self._server is not None:
            if server is not self._server:
                logger.debug("realtime_registry.already_set")
            return self._server
        self._server = server
        self.state = RegistryState.READY
        return server

    async def ensure(self) -> BroadcastServer:
        """Return the live server, building it on first use."""
        if self._server is not None:
            return self._server
        async with self._lock:
            if self._server is not None:
                return self._server
            self.state = RegistryState.INITIALIZING
            try:
                server = self._factory()
            except Exception:
                self.state = RegistryState.UNINITIALIZED
                raise
            logger.info("realtime_registry.server_created", path=server.path)
            return self.set(server)
