from fastapi import APIRouter, HTTPException

from ..db import SessionLocal
from ..schemas.indicator import IndicatorCreate, IndicatorResponse, TempActivate
from ..services.indicators import DuplicateIndicator, IndicatorError, IndicatorService

router = APIRouter(tags=["Indicators"])


@router.post("/indicators", response_model=IndicatorResponse, status_code=201)
def create_indicator(payload: IndicatorCreate):
    """Manually add one indicator; it is classified and whitelist-checked like feed data"""
    db = SessionLocal()
    try:
        indicator = IndicatorService.create_manual(
            db,
            payload.value,
            created_by=payload.created_by,
            kind=payload.type,
            notes=payload.notes,
        )
        return IndicatorResponse(**indicator.to_dict())
    except DuplicateIndicator as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IndicatorError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        db.close()


@router.post("/indicators/{indicator_id}/temp-activate", response_model=IndicatorResponse)
def temp_activate_indicator(indicator_id: int, payload: TempActivate):
    db = SessionLocal()
    try:
        indicator = IndicatorService.temp_activate(db, indicator_id, payload.duration_hours, payload.user_id)
        return IndicatorResponse(**indicator.to_dict())
    except ValueError as e:
        status = 404 if "not found" in str(e).lower() else 400
        raise HTTPException(status_code=status, detail=str(e))
    finally:
        db.close()
