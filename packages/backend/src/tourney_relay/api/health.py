"""Health check endpoint.

Learn: Reports whether the relay is on its primary transport. Running on
the spool is a working state, so it reports "degraded" rather than an
error status: clients still get events.
"""

from fastapi import APIRouter, Request

from tourney_relay import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Server status, active transport, client count and relay counters."""
    relay = request.app.state.supervisor.status()
    broker = relay["broker"]

    status = "healthy" if broker.get("available") else "degraded"
    return {"status": status, "server": "ok", "version": __version__, **relay}
