"""ChipPackage model"""
import uuid
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime
from datetime import datetime, timezone
from tlyt.models.base import Base


class ChipPackage(Base):
    """Purchasable chip bundle, resolved from the Stripe price on a checkout line item"""
    __tablename__ = "chip_packages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    chip_amount = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)
    stripe_price_id = Column(String(255), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
