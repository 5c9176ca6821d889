"""Account API routes"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tlyt.api.serializers import account_to_dict
from tlyt.core.config import settings
from tlyt.core.security import require_account
from tlyt.db.redis import get_trial_cooldown_remaining
from tlyt.db.session import get_db
from tlyt.schemas.accounts import CreateAccountRequest
from tlyt.services.ledger_service import create_account, get_account
from tlyt.utils.account_tokens import generate_account_token

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.post("", status_code=201)
def create(request_data: Optional[CreateAccountRequest] = None, db: Session = Depends(get_db)):
    """Create a trial account and issue its access token"""
    account = create_account(db, email=request_data.email if request_data else None)
    return {
        "account": account_to_dict(account),
        "token": generate_account_token(account.id),
    }


@router.get("/me")
def get_me(account_id: str = Depends(require_account), db: Session = Depends(get_db)):
    """Get the calling account"""
    account = get_account(account_id, db)
    data = account_to_dict(account)
    if account.is_trial:
        data["trial_cooldown_remaining"] = get_trial_cooldown_remaining(account_id)
        data["trial_cooldown_window"] = settings.TRIAL_COOLDOWN_SECONDS
    return {"account": data}
