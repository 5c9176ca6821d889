"""Chip package catalogue"""
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from tlyt.core.config import settings
from tlyt.models.chip_package import ChipPackage

logger = logging.getLogger(__name__)

DEFAULT_PACKAGES = [
    {
        'name': 'Basic Pack',
        'description': 'Perfect for trying out our video analysis',
        'chip_amount': 70,
        'price_cents': 100,
        'setting': 'STRIPE_PRICE_BASIC_PACK',
        'sort_order': 1,
    },
    {
        'name': 'Value Pack',
        'description': 'Best value for regular users',
        'chip_amount': 200,
        'price_cents': 250,
        'setting': 'STRIPE_PRICE_VALUE_PACK',
        'sort_order': 2,
    },
]


def list_active_packages(db: Session) -> List[ChipPackage]:
    return db.query(ChipPackage).filter(
        ChipPackage.is_active == True  # noqa: E712
    ).order_by(ChipPackage.sort_order, ChipPackage.price_cents).all()


def get_package_by_price_ref(price_ref: Optional[str], db: Session) -> Optional[ChipPackage]:
    """Resolve a package from an external price reference (inactive packages included)"""
    if not price_ref:
        return None
    return db.query(ChipPackage).filter(ChipPackage.stripe_price_id == price_ref).first()


def seed_chip_packages(db: Session) -> List[ChipPackage]:
    """Create the default packages whose Stripe price is configured and not yet stored"""
    created = []
    for package_def in DEFAULT_PACKAGES:
        price_ref = getattr(settings, package_def['setting'])
        if not price_ref:
            logger.warning(f"{package_def['setting']} not set, skipping {package_def['name']}")
            continue
        if get_package_by_price_ref(price_ref, db):
            logger.info(f"{package_def['name']} already exists")
            continue

        package = ChipPackage(
            name=package_def['name'],
            description=package_def['description'],
            chip_amount=package_def['chip_amount'],
            price_cents=package_def['price_cents'],
            stripe_price_id=price_ref,
            is_active=True,
            sort_order=package_def['sort_order'],
        )
        db.add(package)
        created.append(package)

    db.commit()
    for package in created:
        db.refresh(package)
        logger.info(f"Created package {package.name}: {package.chip_amount} chips for {package.price_cents} cents")
    return created
