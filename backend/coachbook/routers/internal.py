# backend/coachbook/routers/internal.py
"""
Internal API endpoints for trusted consumers.

These endpoints are NOT exposed through the public proxy.
They are called directly by trusted services (the payment webhook handler,
the compensation replay cron).

Access: X-Internal-Token when INTERNAL_API_TOKEN is set, network boundary otherwise.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, require_internal
from ..database import get_db
from ..deps import get_calendar, get_compensation_queue, get_ledger
from ..schemas.credits import (
    CompensationReplayResponse,
    CreditGrant,
    CreditGrantResponse,
    PurchaseRead,
)
from ..services.compensation import RedisCompensationQueue, replay_compensations
from ..services.credits import CreditLedger, get_user
from ..services.google_calendar import GoogleCalendarGateway

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal)],
)


@router.post("/credits/grant", response_model=CreditGrantResponse)
def grant_credits(
    data: CreditGrant,
    db: Session = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
):
    """
    Add purchased sessions to a user's ledger.

    Called once per successful payment; a redelivered webhook with the same
    payment_id returns the existing purchase with created=false.
    """
    user = get_user(db, Principal(subject="", email=data.email))
    purchase, created = ledger.grant(
        db,
        user.id,
        payment_id=data.payment_id,
        duration=data.duration,
        sessions=data.sessions,
        package_id=data.package_id,
    )
    if not created:
        logger.info(f"Payment {data.payment_id} already granted to user {user.id}")

    return CreditGrantResponse(
        purchase=PurchaseRead.model_validate(purchase),
        created=created,
    )


@router.post("/compensations/replay", response_model=CompensationReplayResponse)
def replay_pending_compensations(
    db: Session = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
    calendar: GoogleCalendarGateway = Depends(get_calendar),
    queue: RedisCompensationQueue = Depends(get_compensation_queue),
):
    """Retry credit reverts that could not be written at commit time."""
    return replay_compensations(db, ledger, calendar, queue)
