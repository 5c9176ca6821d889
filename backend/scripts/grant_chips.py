#!/usr/bin/env python3
"""
Adjust chip balances, link identities and check ledger integrity.

Usage:
    # Grant chips
    python grant_chips.py --account <account-id> --chips 100 --reason "Support credit"

    # Remove chips
    python grant_chips.py --account <account-id> --remove 20 --reason "Chargeback"

    # Link an account to an external identity
    python grant_chips.py --account <account-id> --claim <external-id> --email user@example.com

    # Compare balance against the ledger
    python grant_chips.py --account <account-id> --verify
"""

import argparse
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tlyt.core.exceptions import ChipEconomyError
from tlyt.db.session import SessionLocal
from tlyt.models.ledger_entry import EntryCategory
from tlyt.services.balance_guard import credit, debit
from tlyt.services.ledger_service import claim_account, get_balance, verify_account_integrity


def grant_chips(account_id: str, chips: int, reason: str) -> bool:
    """Credit chips to an account as an admin_credit entry"""
    db = SessionLocal()
    try:
        old_balance = get_balance(account_id, db)
        change = credit(account_id, chips, f"Admin credit: {reason}", EntryCategory.ADMIN_CREDIT, db)
        print(f"✅ Granted {chips} chips to {account_id}")
        print(f"   Balance: {old_balance} → {change.new_balance}")
        return True
    except ChipEconomyError as e:
        print(f"❌ Error: {e}")
        return False
    finally:
        db.close()


def remove_chips(account_id: str, chips: int, reason: str) -> bool:
    """Debit chips from an account as an admin_debit entry"""
    db = SessionLocal()
    try:
        old_balance = get_balance(account_id, db)
        change = debit(account_id, chips, f"Admin debit: {reason}", db, category=EntryCategory.ADMIN_DEBIT)
        print(f"✅ Removed {chips} chips from {account_id}")
        print(f"   Balance: {old_balance} → {change.new_balance}")
        return True
    except ChipEconomyError as e:
        print(f"❌ Error: {e}")
        return False
    finally:
        db.close()


def link_identity(account_id: str, external_id: str, email: str = None) -> bool:
    """Claim an account for an external identity"""
    db = SessionLocal()
    try:
        account = claim_account(account_id, external_id, db, email=email)
        if account.id != account_id:
            print(f"⚠️  Identity already linked to account {account.id}")
            return False
        print(f"✅ Account {account_id} linked to {external_id}")
        return True
    except ChipEconomyError as e:
        print(f"❌ Error: {e}")
        return False
    finally:
        db.close()


def verify(account_id: str) -> bool:
    db = SessionLocal()
    try:
        report = verify_account_integrity(account_id, db)
        mark = "✅" if report['consistent'] else "❌"
        print(f"{mark} Account {account_id}")
        print(f"   Balance: {report['balance']}")
        print(f"   Ledger sum: {report['ledger_sum']} ({report['entry_count']} entries)")
        return report['consistent']
    except ChipEconomyError as e:
        print(f"❌ Error: {e}")
        return False
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(
        description='Adjust chip balances and check ledger integrity',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('--account', required=True, help='Account ID')
    parser.add_argument('--chips', type=int, help='Number of chips to grant')
    parser.add_argument('--remove', type=int, help='Number of chips to remove')
    parser.add_argument('--claim', metavar='EXTERNAL_ID', help='Link the account to an external identity')
    parser.add_argument('--email', help='Email to store when claiming')
    parser.add_argument('--reason', default='manual adjustment', help='Reason recorded in the ledger')
    parser.add_argument('--verify', action='store_true', help='Compare balance with the ledger sum')

    args = parser.parse_args()

    actions = sum([bool(args.chips), bool(args.remove), bool(args.claim), args.verify])
    if actions == 0:
        print("❌ Error: Must specify one action (--chips, --remove, --claim or --verify)")
        parser.print_help()
        sys.exit(1)
    if actions > 1:
        print("❌ Error: Can only specify one action at a time")
        sys.exit(1)

    if args.chips:
        success = grant_chips(args.account, args.chips, args.reason)
    elif args.remove:
        success = remove_chips(args.account, args.remove, args.reason)
    elif args.claim:
        success = link_identity(args.account, args.claim, args.email)
    else:
        success = verify(args.account)

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
