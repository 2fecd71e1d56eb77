"""
Health check endpoint
"""

from fastapi import APIRouter, Request

from ..config import API_VERSION

router = APIRouter()


@router.get("/health", tags=["System"])
async def health(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "version": API_VERSION,
        "scheduler_running": bool(scheduler and scheduler.running),
    }
