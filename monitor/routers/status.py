"""
monitor/routers/status.py

GET /engine/status endpoint.
Reports whether the engine is running and its lifecycle counters.
"""

from dataclasses import asdict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/engine/status")
async def engine_status(request: Request) -> dict:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return {"enabled": False, "running": False}
    return {"enabled": True, "running": engine.is_running, **asdict(engine.stats)}
