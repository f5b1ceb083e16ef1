"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and
dependencies (database, Redis) are reachable. It also reports the realtime
queue (name, backend, job counts) and how many dashboards are connected.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from folio import __version__
from folio.api.deps import get_data, get_realtime
from folio.db.client import DataClient
from folio.realtime.pipeline import RealtimePipeline

router = APIRouter()


@router.get("/health")
async def health_check(
    data: DataClient = Depends(get_data),
    realtime: RealtimePipeline = Depends(get_realtime),
):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check database
    try:
        async with data.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check Redis
    queue_info = realtime.describe()
    try:
        await realtime.connections.queue_connection().ping()
        checks["redis"] = "ok"
        queue_info["counts"] = await realtime.queue.counts()
    except Exception as e:
        checks["redis"] = f"error: {e}"

    server = realtime.registry.get()
    queue_info["clients"] = len(server.live_connection_ids()) if server else 0

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks, "realtime": queue_info}
