"""Ledger store - accounts, balances and the append-only ledger

The account row is the per-account serialization point: every balance change
is a single conditional UPDATE followed by the ledger INSERT in the same
transaction, so concurrent writers to one account are linearized by the
database row lock while other accounts proceed independently.
"""
from sqlalchemy.orm import Session
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple
import logging

from tlyt.core.exceptions import (
    AccountNotFoundError, InsufficientBalanceError, InvalidAmountError, StorageError
)
from tlyt.models.account import Account
from tlyt.models.ledger_entry import LedgerEntry, EntryCategory

logger = logging.getLogger(__name__)
ledger_logger = logging.getLogger("ledger")


def get_account(account_id: str, db: Session) -> Account:
    """Get an account or raise AccountNotFoundError"""
    try:
        account = db.query(Account).filter(Account.id == account_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load account {account_id}: {e}", exc_info=True)
        raise StorageError("Failed to load account") from e

    if not account:
        raise AccountNotFoundError(account_id)
    return account


def create_account(db: Session, email: Optional[str] = None) -> Account:
    """Create an unclaimed (trial) account with a zero balance"""
    account = Account(email=email, chip_balance=0)
    try:
        db.add(account)
        db.commit()
        db.refresh(account)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create account: {e}", exc_info=True)
        raise StorageError("Failed to create account") from e

    logger.info(f"Created trial account {account.id}")
    return account


def claim_account(account_id: str, external_id: str, db: Session, email: Optional[str] = None) -> Account:
    """Link an account to an external identity.

    There is only ever one live account per identity: if another account
    already holds the identity, that account is returned unchanged.
    """
    account = get_account(account_id, db)
    if account.external_id == external_id:
        return account

    existing = db.query(Account).filter(Account.external_id == external_id).first()
    if existing:
        logger.info(f"Identity already linked to account {existing.id}, not claiming {account_id}")
        return existing

    if account.external_id is not None:
        # Already claimed by a different identity
        logger.warning(f"Account {account_id} is already claimed, refusing to relink")
        return account

    account.external_id = external_id
    if email:
        account.email = email
    try:
        db.commit()
        db.refresh(account)
    except IntegrityError:
        # Lost a race with another claim for the same identity
        db.rollback()
        existing = db.query(Account).filter(Account.external_id == external_id).first()
        if existing:
            return existing
        raise StorageError("Failed to claim account")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to claim account {account_id}: {e}", exc_info=True)
        raise StorageError("Failed to claim account") from e

    logger.info(f"Account {account_id} claimed by external identity")
    return account


def get_balance(account_id: str, db: Session) -> int:
    """Current chip balance, read from the database rather than the identity map"""
    try:
        balance = db.execute(
            select(Account.chip_balance).where(Account.id == account_id)
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Failed to read balance for account {account_id}: {e}", exc_info=True)
        raise StorageError("Failed to read balance") from e

    if balance is None:
        raise AccountNotFoundError(account_id)
    return balance


def find_entry_by_external_ref(external_ref: str, db: Session) -> Optional[LedgerEntry]:
    return db.query(LedgerEntry).filter(LedgerEntry.external_ref == external_ref).first()


def append_entry(
    account_id: str,
    delta: int,
    category: str,
    description: str,
    db: Session,
    external_ref: Optional[str] = None,
    resource_ref: Optional[str] = None,
    package_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Tuple[LedgerEntry, bool]:
    """
    Apply a balance change and record it as one unit of work.

    Args:
        account_id: Account to change
        delta: Signed chip delta (non-zero)
        category: EntryCategory value
        description: Human-readable description
        db: Database session
        external_ref: Optional idempotency key, unique across the ledger
        resource_ref: Optional related resource (video id, package id)
        package_id: Package that funded a purchase entry
        request_id: Analysis request a spend/refund belongs to

    Returns:
        (entry, created). When external_ref was already used the pre-existing
        entry is returned with created=False and the balance is untouched.

    Raises:
        InsufficientBalanceError: the change would make the balance negative
        AccountNotFoundError: the account does not exist
        StorageError: any other persistence failure
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidAmountError(f"Ledger delta must be a non-zero integer, got {delta!r}")

    category = EntryCategory(category).value

    try:
        if external_ref:
            existing = find_entry_by_external_ref(external_ref, db)
            if existing:
                if existing.account_id != account_id:
                    logger.warning(
                        f"External ref {external_ref} already used by account {existing.account_id}, "
                        f"not account {account_id}"
                    )
                ledger_logger.info(f"Duplicate ledger entry for {external_ref}, returning existing entry {existing.id}")
                return existing, False

        # Conditional update: the row lock serializes writers, the predicate
        # keeps the balance non-negative
        result = db.execute(
            update(Account)
            .where(Account.id == account_id, Account.chip_balance + delta >= 0)
            .values(chip_balance=Account.chip_balance + delta, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            db.rollback()
            available = db.execute(
                select(Account.chip_balance).where(Account.id == account_id)
            ).scalar_one_or_none()
            if available is None:
                raise AccountNotFoundError(account_id)
            raise InsufficientBalanceError(required=-delta, available=available)

        new_balance = db.execute(
            select(Account.chip_balance).where(Account.id == account_id)
        ).scalar_one()

        entry = LedgerEntry(
            account_id=account_id,
            delta=delta,
            category=category,
            description=description,
            external_ref=external_ref,
            resource_ref=resource_ref,
            package_id=package_id,
            request_id=request_id,
            balance_after=new_balance,
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
    except IntegrityError as e:
        # Rolls back the balance update together with the entry
        db.rollback()
        if external_ref:
            existing = find_entry_by_external_ref(external_ref, db)
            if existing:
                ledger_logger.info(f"Concurrent duplicate for {external_ref}, returning existing entry {existing.id}")
                return existing, False
        logger.error(f"Integrity error appending ledger entry for account {account_id}: {e}", exc_info=True)
        raise StorageError("Failed to append ledger entry") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to append ledger entry for account {account_id}: {e}", exc_info=True)
        raise StorageError("Failed to append ledger entry") from e

    ledger_logger.info(
        f"Ledger entry {entry.id}: account={account_id} delta={delta:+d} category={category} "
        f"balance {new_balance - delta} -> {new_balance}"
    )
    return entry, True


def list_recent(account_id: str, db: Session, limit: int = 50, offset: int = 0) -> List[LedgerEntry]:
    """Ledger entries for an account, newest first"""
    get_account(account_id, db)
    return (
        db.query(LedgerEntry)
        .filter(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def verify_account_integrity(account_id: str, db: Session) -> Dict[str, Any]:
    """Compare the stored balance against the sum of the account's ledger"""
    balance = get_balance(account_id, db)
    ledger_sum, entry_count = db.query(
        func.coalesce(func.sum(LedgerEntry.delta), 0),
        func.count(LedgerEntry.id),
    ).filter(LedgerEntry.account_id == account_id).one()

    consistent = balance == ledger_sum
    if not consistent:
        ledger_logger.error(
            f"Ledger mismatch for account {account_id}: balance={balance} ledger_sum={ledger_sum}"
        )

    return {
        'account_id': account_id,
        'balance': balance,
        'ledger_sum': int(ledger_sum),
        'entry_count': entry_count,
        'consistent': consistent,
    }
