"""Balance guard - the only path by which chip balances change"""
from dataclasses import dataclass
from sqlalchemy.orm import Session
from typing import Optional
import logging

from tlyt.core.exceptions import InsufficientBalanceError, InvalidAmountError
from tlyt.core.metrics import chips_debited_counter, chips_credited_counter, insufficient_balance_counter
from tlyt.models.ledger_entry import LedgerEntry, EntryCategory, DEBIT_CATEGORIES, CREDIT_CATEGORIES
from tlyt.services.ledger_service import append_entry, get_balance

logger = logging.getLogger(__name__)


@dataclass
class BalanceChange:
    new_balance: int
    entry: LedgerEntry
    created: bool = True


def _validate_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Chip amount must be a positive integer, got {amount!r}")


def _validate_category(category, allowed) -> EntryCategory:
    try:
        category = EntryCategory(category)
    except ValueError:
        raise InvalidAmountError(f"Unknown ledger category {category!r}")
    if category not in allowed:
        raise InvalidAmountError(f"Category {category.value} is not valid for this operation")
    return category


def can_afford(account_id: str, cost: int, db: Session) -> bool:
    """Whether the account's current balance covers the cost"""
    return get_balance(account_id, db) >= cost


def debit(
    account_id: str,
    amount: int,
    description: str,
    db: Session,
    category: str = EntryCategory.ANALYSIS_SPEND,
    resource_ref: Optional[str] = None,
    request_id: Optional[str] = None,
) -> BalanceChange:
    """
    Take chips from an account.

    Raises InsufficientBalanceError (carrying the shortfall) when the balance
    does not cover the amount; nothing is written in that case.
    """
    _validate_amount(amount)
    category = _validate_category(category, DEBIT_CATEGORIES)

    try:
        entry, _ = append_entry(
            account_id, -amount, category.value, description, db,
            resource_ref=resource_ref, request_id=request_id,
        )
    except InsufficientBalanceError as e:
        insufficient_balance_counter.inc()
        logger.info(
            f"Debit of {amount} chips refused for account {account_id}: "
            f"available {e.available}, shortfall {e.shortfall}"
        )
        raise

    chips_debited_counter.labels(category=category.value).inc(amount)
    return BalanceChange(new_balance=entry.balance_after, entry=entry)


def credit(
    account_id: str,
    amount: int,
    description: str,
    category: str,
    db: Session,
    external_ref: Optional[str] = None,
    resource_ref: Optional[str] = None,
    package_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> BalanceChange:
    """
    Give chips to an account.

    Idempotent on external_ref: a replay returns the original entry with
    created=False and the current balance, without crediting again.
    """
    _validate_amount(amount)
    category = _validate_category(category, CREDIT_CATEGORIES)

    entry, created = append_entry(
        account_id, amount, category.value, description, db,
        external_ref=external_ref, resource_ref=resource_ref,
        package_id=package_id, request_id=request_id,
    )

    if not created:
        return BalanceChange(new_balance=get_balance(account_id, db), entry=entry, created=False)

    chips_credited_counter.labels(category=category.value).inc(amount)
    return BalanceChange(new_balance=entry.balance_after, entry=entry)
