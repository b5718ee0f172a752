# backend/coachbook/schemas/bookings.py

from typing import Optional

from pydantic import BaseModel, Field


class BookingCommit(BaseModel):
    # Format checks happen in the service so they map to INVALID_* codes
    date: str = Field(description="Date in YYYY-MM-DD format")
    time: str = Field(description="Time in HH:MM format")
    duration: int = Field(description="Session length in minutes")
    idempotency_key: Optional[str] = Field(None, max_length=128)


class BookingRead(BaseModel):
    id: str
    date: str
    time: str
    duration: int
    status: str
    booked_at: str
    calendar_event_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    cancelled_at: Optional[str] = None

    model_config = {"from_attributes": True}


class BookingCommitResponse(BaseModel):
    success: bool = True
    booking: BookingRead
    event_url: Optional[str] = None
    duplicate: bool = False


class BookingCancelResponse(BaseModel):
    success: bool = True
    booking: BookingRead


class BookingListResponse(BaseModel):
    bookings: list[BookingRead]


class BookingStatusResponse(BaseModel):
    booked: bool
    booking: Optional[BookingRead] = None
