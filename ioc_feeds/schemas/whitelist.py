from typing import Optional
from pydantic import BaseModel, Field


class WhitelistCreate(BaseModel):
    value: str = Field(..., min_length=1, description="IP, CIDR block, domain, hash or URL")
    type: str = Field(..., pattern="^(ip|domain|hash|url)$", description="Indicator kind the entry applies to")
    reason: Optional[str] = Field(None, description="Why the value is allowed")
    created_by: Optional[int] = Field(None, description="Submitting user id")


class WhitelistResponse(BaseModel):
    id: int
    value: str
    type: str
    reason: Optional[str]
    created_at: Optional[str]
    affected_indicators: int = Field(0, description="Stored indicators deleted or deactivated by this entry")
