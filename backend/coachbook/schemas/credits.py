# backend/coachbook/schemas/credits.py

from typing import Optional

from pydantic import BaseModel, Field


class CreditsResponse(BaseModel):
    by_duration: dict[int, int] = Field(description="Remaining sessions per duration in minutes")


class CreditGrant(BaseModel):
    email: str
    payment_id: str = Field(min_length=1)
    duration: int
    sessions: int = Field(ge=1)
    package_id: Optional[str] = None


class PurchaseRead(BaseModel):
    id: str
    package_id: Optional[str] = None
    duration_minutes: int
    sessions_total: int
    sessions_used: int
    status: str
    purchase_date: str
    payment_id: Optional[str] = None

    model_config = {"from_attributes": True}


class CreditGrantResponse(BaseModel):
    success: bool = True
    purchase: PurchaseRead
    created: bool


class CompensationReplayResponse(BaseModel):
    replayed: int
    remaining: int

    model_config = {"from_attributes": True}
