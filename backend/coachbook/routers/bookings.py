# backend/coachbook/routers/bookings.py
"""
Bookings API endpoints (session-authenticated).

POST /bookings/commit              - Book a slot, spending one credit
POST /bookings/{booking_id}/cancel - Cancel and get the credit back
GET  /bookings                     - Own bookings, newest first
GET  /bookings/status              - Is there a confirmed booking at date/time?
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..database import get_db
from ..deps import get_booking_service
from ..schemas.bookings import (
    BookingCancelResponse,
    BookingCommit,
    BookingCommitResponse,
    BookingListResponse,
    BookingRead,
    BookingStatusResponse,
)
from ..services.booking import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/commit", response_model=BookingCommitResponse)
def commit_booking(
    data: BookingCommit,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    result = service.commit(
        db,
        principal,
        data.date,
        data.time,
        data.duration,
        idempotency_key=data.idempotency_key,
    )
    return BookingCommitResponse(
        booking=BookingRead.model_validate(result.booking),
        event_url=result.event_url,
        duplicate=result.duplicate,
    )


@router.post("/{booking_id}/cancel", response_model=BookingCancelResponse)
def cancel_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.cancel(db, principal, booking_id)
    return BookingCancelResponse(booking=BookingRead.model_validate(booking))


@router.get("", response_model=BookingListResponse)
def list_bookings(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    bookings = service.list_bookings(db, principal)
    return BookingListResponse(bookings=[BookingRead.model_validate(b) for b in bookings])


@router.get("/status", response_model=BookingStatusResponse)
def booking_status(
    target_date: str = Query(..., alias="date"),
    target_time: str = Query(..., alias="time"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    """Lets a client whose commit timed out check the outcome before retrying."""
    booking = service.booking_status(db, principal, target_date, target_time)
    return BookingStatusResponse(
        booked=booking is not None,
        booking=BookingRead.model_validate(booking) if booking else None,
    )
