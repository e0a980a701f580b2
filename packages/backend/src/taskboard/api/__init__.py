"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied per route rather than at include_router level:
the broadcasting router serves end users (JWT) and the main application
(API key) side by side. Health is open.
"""

from fastapi import APIRouter

from taskboard.api.broadcasting import router as broadcasting_router
from taskboard.api.health import router as health_router
from taskboard.api.reactions import router as reactions_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(broadcasting_router, tags=["broadcasting"])
api_router.include_router(reactions_router, tags=["reactions"])
