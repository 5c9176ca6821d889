#!/usr/bin/env python3
"""
Seed the chip package catalogue from the configured Stripe prices.

Usage:
    STRIPE_PRICE_BASIC_PACK=price_... STRIPE_PRICE_VALUE_PACK=price_... python seed_chip_packages.py
"""

import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tlyt.db.session import SessionLocal, init_db
from tlyt.services.package_service import seed_chip_packages, list_active_packages


def main():
    init_db()
    db = SessionLocal()
    try:
        created = seed_chip_packages(db)
        print(f"✅ Created {len(created)} package(s)")
        for package in list_active_packages(db):
            print(f"   {package.name}: {package.chip_amount} chips for {package.price_cents} cents ({package.stripe_price_id})")
    except Exception as e:
        print(f"❌ Error: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == '__main__':
    main()
