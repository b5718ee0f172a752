# backend/coachbook/routers/credits.py

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..database import get_db
from ..deps import get_ledger
from ..schemas.credits import CreditsResponse
from ..services.credits import CreditLedger, get_user

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("", response_model=CreditsResponse)
def get_credits(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Remaining sessions per duration class."""
    user = get_user(db, principal)
    return CreditsResponse(by_duration=ledger.credits(db, user.id))
