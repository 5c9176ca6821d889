"""Chip API routes"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tlyt.api.serializers import entry_to_dict, package_to_dict
from tlyt.core.security import require_account
from tlyt.db.session import get_db
from tlyt.services.ledger_service import get_balance, list_recent
from tlyt.services.package_service import list_active_packages

router = APIRouter(prefix="/api/chips", tags=["chips"])


@router.get("/balance")
def balance(account_id: str = Depends(require_account), db: Session = Depends(get_db)):
    """Get current chip balance"""
    return {"chip_balance": get_balance(account_id, db)}


@router.get("/transactions")
def transactions(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    account_id: str = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Get ledger history, newest first"""
    entries = list_recent(account_id, db, limit=limit, offset=offset)
    return {
        "transactions": [entry_to_dict(entry) for entry in entries],
        "limit": limit,
        "offset": offset,
    }


@router.get("/packages")
def packages(db: Session = Depends(get_db)):
    """List purchasable chip packages"""
    return {"packages": [package_to_dict(package) for package in list_active_packages(db)]}
