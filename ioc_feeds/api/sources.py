from typing import List

from fastapi import APIRouter, HTTPException, Request

from ..db import SessionLocal
from ..fetcher import dispatch_ingest, ingestion_guard
from ..schemas.source import SourceCreate, SourceResponse
from ..services.sources import SourceService

router = APIRouter(tags=["Sources"])


@router.post("/sources", response_model=SourceResponse, status_code=201)
def create_source(payload: SourceCreate):
    db = SessionLocal()
    try:
        source = SourceService.create_source(
            db,
            name=payload.name,
            url=payload.url,
            indicator_types=list(payload.indicator_types),
            fetch_interval=payload.fetch_interval,
            created_by=payload.created_by,
        )
        return SourceResponse(**source.to_dict())
    finally:
        db.close()


@router.get("/sources", response_model=List[SourceResponse])
def list_sources():
    db = SessionLocal()
    try:
        return [SourceResponse(**s.to_dict()) for s in SourceService.list_sources(db)]
    finally:
        db.close()


@router.post("/sources/{source_id}/fetch", status_code=202)
async def fetch_source(source_id: int, request: Request):
    """Start an ingestion for one source now; does not wait for it to finish"""
    db = SessionLocal()
    try:
        source = SourceService.get_source(db, source_id)
    finally:
        db.close()
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")

    if ingestion_guard.is_active(source_id):
        return {"status": "already_running", "source_id": source_id}

    transport = getattr(request.app.state, "feed_transport", None)
    dispatch_ingest(source, transport=transport)
    return {"status": "started", "source_id": source_id}


@router.post("/sources/{source_id}/pause", response_model=SourceResponse)
def pause_source(source_id: int):
    db = SessionLocal()
    try:
        return SourceResponse(**SourceService.pause(db, source_id).to_dict())
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    finally:
        db.close()


@router.post("/sources/{source_id}/resume", response_model=SourceResponse)
def resume_source(source_id: int):
    db = SessionLocal()
    try:
        return SourceResponse(**SourceService.resume(db, source_id).to_dict())
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    finally:
        db.close()
