"""LedgerEntry model"""
import enum
import uuid
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Index, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from tlyt.models.base import Base


class EntryCategory(str, enum.Enum):
    PURCHASE = "purchase"
    ANALYSIS_SPEND = "analysis_spend"
    REFUND = "refund"
    ADMIN_CREDIT = "admin_credit"
    ADMIN_DEBIT = "admin_debit"


DEBIT_CATEGORIES = frozenset({EntryCategory.ANALYSIS_SPEND, EntryCategory.ADMIN_DEBIT})
CREDIT_CATEGORIES = frozenset({EntryCategory.PURCHASE, EntryCategory.REFUND, EntryCategory.ADMIN_CREDIT})


class LedgerEntry(Base):
    """Immutable record of a balance change"""
    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)  # Positive for credits, negative for debits
    category = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    external_ref = Column(String(255), unique=True, nullable=True)  # Idempotency key (checkout session id, refund:<request id>)
    resource_ref = Column(String(255), nullable=True)  # Video id for spend/refund, package id for purchases
    package_id = Column(String(36), ForeignKey("chip_packages.id", ondelete="SET NULL"), nullable=True)
    request_id = Column(String(36), ForeignKey("analysis_requests.id", ondelete="SET NULL"), nullable=True, index=True)
    balance_after = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    account = relationship("Account", back_populates="ledger_entries")
    package = relationship("ChipPackage")
    request = relationship("AnalysisRequest", back_populates="ledger_entries")

    __table_args__ = (
        Index('ix_ledger_entries_account_created', 'account_id', 'created_at'),
    )

    def __repr__(self):
        return f"<LedgerEntry(account_id={self.account_id}, delta={self.delta}, category={self.category})>"
