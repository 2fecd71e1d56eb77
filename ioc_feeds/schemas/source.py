from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class SourceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Human-readable feed name")
    url: str = Field(..., pattern="^https?://", description="Feed URL (http or https)")
    indicator_types: List[Literal["ip", "domain", "hash", "url"]] = Field(
        ..., min_length=1, description="Kinds to extract from the feed body"
    )
    fetch_interval: int = Field(3600, ge=60, description="Seconds between fetches")
    created_by: Optional[int] = Field(None, description="Creating user id")


class SourceResponse(BaseModel):
    id: int
    name: str
    url: str
    indicator_types: List[str]
    fetch_interval: int
    is_active: bool
    is_paused: bool
    last_fetch: Optional[str]
    last_fetch_status: Optional[str]
    last_fetch_error: Optional[str]
    created_at: Optional[str]
