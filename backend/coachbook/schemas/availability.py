# backend/coachbook/schemas/availability.py
"""
Pydantic schemas for availability API.
"""

from pydantic import BaseModel, Field


class SlotRead(BaseModel):
    """One bookable start time."""
    time: str  # "HH:MM"
    can_book_30: bool = False
    can_book_60: bool = Field(False, description="Next half hour is free as well")

    model_config = {"extra": "allow"}


class DayAvailabilityResponse(BaseModel):
    date: str
    slots: list[SlotRead]
    timezone: str
    cached: bool = False
    computed_at: float
    degraded: bool = Field(False, description="A calendar source could not be read")


class AvailabilityRangeResponse(BaseModel):
    availability: dict[str, DayAvailabilityResponse]
    timezone: str


class PreloadResponse(BaseModel):
    days_loaded: int
    expires_in: int = Field(description="Seconds until the preloaded days expire")

    model_config = {"from_attributes": True}
