from fastapi import APIRouter, HTTPException
from sqlalchemy.exc import IntegrityError

from ..db import SessionLocal
from ..schemas.whitelist import WhitelistCreate, WhitelistResponse
from ..services.whitelist import WhitelistService

router = APIRouter(tags=["Whitelist"])


@router.post("/whitelist", response_model=WhitelistResponse, status_code=201)
def create_whitelist_entry(payload: WhitelistCreate):
    """Add an allow-list entry and apply it to indicators already stored"""
    db = SessionLocal()
    try:
        entry, affected = WhitelistService.add_entry(
            db, payload.value, payload.type, reason=payload.reason, created_by=payload.created_by
        )
        return WhitelistResponse(**entry.to_dict(), affected_indicators=affected)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Whitelist entry already exists")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        db.close()
