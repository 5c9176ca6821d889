"""Stripe checkout and payment settlement"""
import json
import logging
import stripe
from dataclasses import dataclass
from typing import Dict, Optional, Any, List, Tuple
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tlyt.core.config import settings
from tlyt.core.exceptions import (
    AccountNotFoundError, CheckoutError, ExternalWorkFailedError, SignatureInvalidError, StorageError,
    UnknownAccountError, UnknownPackageError
)
from tlyt.core.metrics import webhook_events_counter
from tlyt.models.chip_package import ChipPackage
from tlyt.models.ledger_entry import LedgerEntry, EntryCategory
from tlyt.models.stripe_event import StripeEvent
from tlyt.services.balance_guard import credit
from tlyt.services.ledger_service import get_account, find_entry_by_external_ref
from tlyt.services.package_service import get_package_by_price_ref

logger = logging.getLogger(__name__)
billing_logger = logging.getLogger("billing")

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

SETTLEMENT_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


@dataclass
class SettlementResult:
    status: str  # credited, duplicate, ignored
    entry: Optional[LedgerEntry] = None
    chips: int = 0


# ============================================================================
# CHECKOUT
# ============================================================================

def create_checkout_session(account_id: str, price_ref: str, quantity: int, db: Session) -> Dict:
    """Create a one-off Stripe Checkout session for a chip package"""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise CheckoutError("Quantity must be at least 1")
    if quantity > settings.CHECKOUT_MAX_QUANTITY:
        raise CheckoutError(f"Quantity cannot exceed {settings.CHECKOUT_MAX_QUANTITY}")

    account = get_account(account_id, db)
    if account.is_trial:
        raise CheckoutError("Sign in to purchase chips")

    package = get_package_by_price_ref(price_ref, db)
    if not package or not package.is_active:
        raise UnknownPackageError(price_ref)

    checkout_params = {
        "payment_method_types": ["card"],
        "line_items": [{"price": package.stripe_price_id, "quantity": quantity}],
        "mode": "payment",
        "client_reference_id": account.id,
        "success_url": f"{settings.FRONTEND_URL}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{settings.FRONTEND_URL}/cancel",
        "metadata": {"account_id": account.id, "package_id": package.id},
    }
    if account.email:
        checkout_params["customer_email"] = account.email

    try:
        session = stripe.checkout.Session.create(**checkout_params)
    except stripe.StripeError as e:
        logger.error(f"Failed to create checkout session for account {account_id}: {e}")
        raise CheckoutError("Failed to create checkout session") from e

    billing_logger.info(f"Checkout session {session.id} created: account={account_id} package={package.name} x{quantity}")
    return {"id": session.id, "url": session.url}


# ============================================================================
# WEBHOOK & EVENT LOGGING
# ============================================================================

def log_stripe_event(event_id: str, event_type: str, payload: dict, db: Session) -> StripeEvent:
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if not stripe_event:
        stripe_event = StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            payload=payload,
            status="received"
        )
        try:
            db.add(stripe_event)
            db.commit()
            db.refresh(stripe_event)
        except IntegrityError:
            # Concurrent delivery of the same event
            db.rollback()
            stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).one()
    return stripe_event


def mark_stripe_event(event_id: str, status: str, db: Session, error_message: str = None, processed: bool = True):
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if stripe_event:
        stripe_event.status = status
        stripe_event.error_message = error_message
        if processed:
            stripe_event.processed_at = datetime.now(timezone.utc)
        db.commit()


def _mark_failed_event(event_id: str, error_message: str, db: Session):
    try:
        mark_stripe_event(event_id, "error", db, error_message=error_message, processed=False)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record error for webhook {event_id}: {e}")


# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
        return default if value is None else value
    value = getattr(obj, key, default)
    return default if value is None else value


# ============================================================================
# SETTLEMENT
# ============================================================================

def get_checkout_line_items(session: Any) -> List[Any]:
    """Line items embedded in the session, or listed from Stripe when not expanded"""
    line_items = _get_stripe_value(_get_stripe_value(session, "line_items"), "data")
    if line_items:
        return list(line_items)

    session_id = _get_stripe_value(session, "id")
    listed = stripe.checkout.Session.list_line_items(session_id, limit=100)
    return list(_get_stripe_value(listed, "data", []))


def _resolve_line_items(line_items: List[Any], db: Session) -> List[Tuple[ChipPackage, int]]:
    resolved = []
    for item in line_items:
        price = _get_stripe_value(item, "price")
        price_ref = price if isinstance(price, str) else _get_stripe_value(price, "id")
        quantity = int(_get_stripe_value(item, "quantity", 1))

        package = get_package_by_price_ref(price_ref, db)
        if not package:
            raise UnknownPackageError(price_ref)
        resolved.append((package, quantity))
    return resolved


def settle_checkout_session(session: Any, db: Session) -> SettlementResult:
    """
    Credit the chips bought in a completed checkout session, exactly once.

    The session id is the ledger idempotency key, so redelivered
    notifications resolve to the original entry.

    Raises:
        UnknownAccountError: client_reference_id does not match an account
        UnknownPackageError: a line item's price matches no package
    """
    session_id = _get_stripe_value(session, "id")
    payment_status = _get_stripe_value(session, "payment_status")
    if payment_status != "paid":
        billing_logger.info(f"Checkout session {session_id} not paid yet ({payment_status}), ignoring")
        return SettlementResult(status="ignored")

    existing = find_entry_by_external_ref(session_id, db)
    if existing:
        billing_logger.info(f"Checkout session {session_id} already credited (entry {existing.id})")
        return SettlementResult(status="duplicate", entry=existing, chips=existing.delta)

    client_reference = _get_stripe_value(session, "client_reference_id")
    if not client_reference:
        raise UnknownAccountError(client_reference)
    try:
        account = get_account(client_reference, db)
    except AccountNotFoundError:
        raise UnknownAccountError(client_reference)

    resolved = _resolve_line_items(get_checkout_line_items(session), db)
    if not resolved:
        raise UnknownPackageError(None)

    total_chips = sum(package.chip_amount * quantity for package, quantity in resolved)
    description = ", ".join(
        f"Purchased {package.name} ({package.chip_amount} chips x{quantity})"
        for package, quantity in resolved
    )
    first_package = resolved[0][0]

    change = credit(
        account.id,
        total_chips,
        description,
        EntryCategory.PURCHASE,
        db,
        external_ref=session_id,
        resource_ref=first_package.id,
        package_id=first_package.id,
    )

    if not change.created:
        return SettlementResult(status="duplicate", entry=change.entry, chips=change.entry.delta)

    billing_logger.info(
        f"Credited {total_chips} chips to account {account.id} for checkout session {session_id} "
        f"(balance {change.new_balance})"
    )
    return SettlementResult(status="credited", entry=change.entry, chips=total_chips)


def process_stripe_webhook(payload: bytes, sig_header: str, db: Session) -> Dict[str, Any]:
    """Process Stripe webhook event

    Validates the signature, records the event for idempotency and settles
    checkout sessions. Rejected notifications are acknowledged (not retried)
    but left unprocessed so a manual redelivery can settle them once the
    cause is fixed.

    Raises:
        SignatureInvalidError: missing secret, invalid payload or bad signature
        StorageError: the ledger could not be written (Stripe should retry)
        ExternalWorkFailedError: a Stripe API call failed during settlement (Stripe should retry)
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook secret not configured")
        webhook_events_counter.labels(status="signature_invalid").inc()
        raise SignatureInvalidError("Webhook secret not configured")

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        webhook_events_counter.labels(status="signature_invalid").inc()
        raise SignatureInvalidError("Invalid payload") from e
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid webhook signature: {e}")
        webhook_events_counter.labels(status="signature_invalid").inc()
        raise SignatureInvalidError("Invalid signature") from e

    event_id = event["id"]
    event_type = event["type"]

    try:
        raw_event = json.loads(payload)
    except (ValueError, TypeError):
        raw_event = {"id": event_id, "type": event_type}

    stripe_event = log_stripe_event(event_id, event_type, raw_event, db)
    if stripe_event.processed:
        logger.info(f"Webhook event {event_id} already processed")
        webhook_events_counter.labels(status="already_processed").inc()
        return {"status": "already_processed"}

    data = event["data"]["object"]

    try:
        if event_type in SETTLEMENT_EVENTS:
            result = settle_checkout_session(data, db)
            status = result.status
        elif event_type.startswith("payment_intent."):
            logger.info(f"Payment intent event {event_type} for {_get_stripe_value(data, 'id')}")
            status = "ignored"
        else:
            logger.debug(f"Unhandled webhook event type {event_type}")
            status = "ignored"
    except (UnknownAccountError, UnknownPackageError) as e:
        billing_logger.error(f"Rejected webhook event {event_id}: {e}")
        mark_stripe_event(event_id, "rejected", db, error_message=str(e), processed=False)
        webhook_events_counter.labels(status="rejected").inc()
        return {"status": "rejected"}
    except Exception as e:
        # Left unprocessed and re-raised so Stripe redelivers; the session id
        # ledger key makes the retry safe
        logger.error(f"Error processing webhook {event_id}: {e}", exc_info=True)
        db.rollback()
        _mark_failed_event(event_id, str(e), db)
        webhook_events_counter.labels(status="error").inc()
        if isinstance(e, stripe.StripeError):
            raise ExternalWorkFailedError(f"Stripe API error while settling {event_id}") from e
        raise

    mark_stripe_event(event_id, status, db)
    webhook_events_counter.labels(status=status).inc()
    logger.info(f"Processed webhook event {event_id} of type {event_type}: {status}")
    return {"status": status}
