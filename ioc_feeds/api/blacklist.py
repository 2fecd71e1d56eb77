import asyncio

from fastapi import APIRouter, Request

from ..blacklist import BlacklistGenerator

router = APIRouter(tags=["Blacklist"])


def _generator(request: Request) -> BlacklistGenerator:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        return scheduler.generator
    return BlacklistGenerator()


@router.post("/blacklist/regenerate")
async def regenerate_blacklist(request: Request):
    """Rebuild all blacklist files now and report per-kind counts"""
    result = await asyncio.to_thread(_generator(request).regenerate)
    return {
        "status": "error" if result["errors"] else "ok",
        **result,
    }


@router.get("/blacklist/stats")
async def blacklist_stats(request: Request):
    return await asyncio.to_thread(_generator(request).file_stats)
