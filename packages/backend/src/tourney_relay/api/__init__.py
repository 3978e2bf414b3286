"""API route aggregation.

All HTTP routers registered here get mounted in main.py. The WebSocket
route is mounted separately (its path is configurable).
"""

from fastapi import APIRouter

from tourney_relay.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
