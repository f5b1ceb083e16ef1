"""API route aggregation.

All routers registered here get mounted in main.py. The realtime socket
endpoint is not a router — it is ASGI middleware (realtime/endpoint.py)
because Socket.IO needs the raw scope for websocket upgrades.
"""

from fastapi import APIRouter

from folio.api.health import router as health_router
from folio.api.projects import router as projects_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(projects_router, tags=["projects"])
