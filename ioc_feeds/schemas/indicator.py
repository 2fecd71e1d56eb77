from typing import Optional
from pydantic import BaseModel, Field


class IndicatorCreate(BaseModel):
    value: str = Field(..., min_length=1, description="Raw indicator value (IP, domain, hash or URL)")
    type: Optional[str] = Field(None, description="Requested kind; only needed for soar-url")
    notes: Optional[str] = Field(None, description="Free-text analyst notes")
    created_by: Optional[int] = Field(None, description="Submitting user id")


class TempActivate(BaseModel):
    duration_hours: int = Field(..., gt=0, le=24 * 365, description="Hours the indicator stays active")
    user_id: Optional[int] = Field(None, description="Requesting user id")


class IndicatorResponse(BaseModel):
    id: int
    value: str
    type: str
    hash_type: Optional[str]
    source: str
    source_id: Optional[int]
    is_active: bool
    temp_active_until: Optional[str]
    notes: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]
