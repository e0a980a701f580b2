"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and the
transport is reachable. A missing transport means "degraded", not
"down": the broadcast endpoint still accepts mutations.
"""

from fastapi import APIRouter

from taskboard import __version__
from taskboard.config import settings
from taskboard.errors import TransportUnavailable
from taskboard.realtime.transport import get_transport

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and transport connectivity."""
    checks = {"server": "ok", "version": __version__, "transport_kind": settings.transport}

    try:
        transport = get_transport()
        checks["transport"] = "ok" if await transport.ping() else "error: ping failed"
    except TransportUnavailable as e:
        checks["transport"] = f"error: {e}"

    status = "healthy" if checks["transport"] == "ok" else "degraded"
    return {"status": status, **checks}
