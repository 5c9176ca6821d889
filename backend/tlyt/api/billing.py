"""Billing API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tlyt.core.exceptions import SignatureInvalidError
from tlyt.core.security import require_account
from tlyt.db.session import get_db
from tlyt.schemas.billing import CheckoutRequest
from tlyt.services.stripe_service import create_checkout_session, process_stripe_webhook

router = APIRouter(prefix="/api/billing", tags=["billing"])
logger = logging.getLogger(__name__)


@router.post("/checkout")
def checkout(
    request_data: CheckoutRequest,
    account_id: str = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Create a Stripe Checkout session for a chip package"""
    return create_checkout_session(account_id, request_data.price_ref, request_data.quantity, db)


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    The body is read as raw bytes; signature verification needs it unparsed.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(400, "Missing stripe-signature header")

    try:
        return process_stripe_webhook(payload, sig_header, db)
    except SignatureInvalidError as e:
        logger.error(f"Rejected webhook: {e}")
        raise HTTPException(400, "Invalid signature")
